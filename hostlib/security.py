"""SSH hardening with lockout prevention.

Disabling password authentication is only honored when some account can log in
with a key, unless the operator explicitly forces it. The rendered config must
pass ``sshd -t`` before the service is restarted; a failing check is the one
hard stop in a run.
"""

import pwd
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from .commands import CommandRunner, cmd
from .errors import SSHConfigError
from .files import Mutation, SafeFileMutator, render_template
from .logs import logger
from .services import enable_service, restart_service

DROPIN_NAME = "00-hostbase.conf"
CLIENT_ALIVE_INTERVAL = 60
CLIENT_ALIVE_COUNT_MAX = 10
HUMAN_UID_MIN = 1000
NOBODY_UID = 65534
NOLOGIN_SHELLS = ("nologin", "false")

MANAGED_KEYWORDS = (
    "Port",
    "PasswordAuthentication",
    "ChallengeResponseAuthentication",
    "UsePAM",
    "ClientAliveInterval",
    "ClientAliveCountMax",
)


class PasswordAuthIntent(Enum):
    NOT_REQUESTED = "not-requested"
    REQUESTED = "requested"
    FORCED = "forced"

    @classmethod
    def from_flags(cls, disable_password_auth: bool, force: bool) -> "PasswordAuthIntent":
        if not disable_password_auth:
            return cls.NOT_REQUESTED
        return cls.FORCED if force else cls.REQUESTED


@dataclass(frozen=True)
class SSHPolicy:
    """Final SSH settings after weighing intent against key evidence."""

    port: int
    password_auth: bool
    downgraded: bool = False
    warnings: tuple = ()

    def directives(self) -> list[tuple[str, str]]:
        return [
            ("Port", str(self.port)),
            ("PasswordAuthentication", "yes" if self.password_auth else "no"),
            ("ChallengeResponseAuthentication", "no"),
            ("UsePAM", "yes"),
            ("ClientAliveInterval", str(CLIENT_ALIVE_INTERVAL)),
            ("ClientAliveCountMax", str(CLIENT_ALIVE_COUNT_MAX)),
        ]


def resolve_policy(port: int, intent: PasswordAuthIntent, has_keys: bool) -> SSHPolicy:
    """
    Decide whether password authentication is disabled.

    not-requested keeps it enabled; requested disables it only with key
    evidence (otherwise downgrades); forced always disables it.
    """
    if intent == PasswordAuthIntent.NOT_REQUESTED:
        return SSHPolicy(port, password_auth=True)

    if has_keys:
        return SSHPolicy(port, password_auth=False)

    if intent == PasswordAuthIntent.FORCED:
        return SSHPolicy(
            port,
            password_auth=False,
            warnings=(
                "No authorized_keys found but password login is being disabled as forced; "
                "make sure console or out-of-band access exists",
            ),
        )

    return SSHPolicy(
        port,
        password_auth=True,
        downgraded=True,
        warnings=(
            "No authorized_keys found for root or any user; keeping password login "
            "enabled to avoid a lockout",
            "Force the change only if keys are configured elsewhere or console access exists",
        ),
    )


def _non_empty(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def _is_human_account(entry: pwd.struct_passwd) -> bool:
    if entry.pw_uid < HUMAN_UID_MIN or entry.pw_uid == NOBODY_UID:
        return False
    shell = Path(entry.pw_shell or "").name
    return bool(shell) and shell not in NOLOGIN_SHELLS


def has_authorized_keys(root_home: Path, accounts: Optional[Iterable] = None) -> bool:
    """
    Look for any non-empty authorized_keys that could still grant access.

    Args:
        root_home: root's home directory
        accounts: pwd entries to scan (defaults to pwd.getpwall())

    Returns:
        True if root or a human account has a non-empty authorized_keys
    """
    if _non_empty(Path(root_home) / ".ssh" / "authorized_keys"):
        logger.debug(f"Found authorized_keys for root in {root_home}")
        return True

    for entry in accounts if accounts is not None else pwd.getpwall():
        if not _is_human_account(entry):
            continue
        home = Path(entry.pw_dir)
        if home.is_dir() and _non_empty(home / ".ssh" / "authorized_keys"):
            logger.debug(f"Found authorized_keys for {entry.pw_name}")
            return True
    return False


def apply_directives(text: str, directives: list[tuple[str, str]], header: str = "") -> str:
    """
    Set SSH directives in a full sshd_config, keeping everything else.

    The first active occurrence of each keyword in the global section (before
    the first ``Match`` block) is replaced; later global duplicates are
    commented out; missing keywords are inserted before the first ``Match``.
    """
    wanted = {k.lower(): (k, v) for k, v in directives}
    lines = text.splitlines()
    out: list[str] = []
    seen: set[str] = set()
    in_match = False

    def missing_lines() -> list[str]:
        pending = [f"{k} {v}" for k, v in directives if k.lower() not in seen]
        seen.update(wanted)
        return ([header] if header and pending else []) + pending

    for line in lines:
        stripped = line.strip()
        words = re.split(r"[\s=]+", stripped, maxsplit=1) if stripped else []
        keyword = words[0].lower() if words and not stripped.startswith("#") else ""

        if keyword == "match" and not in_match:
            in_match = True
            extra = missing_lines()
            if extra:
                out.extend(extra + [""])

        if not in_match and keyword in wanted:
            if keyword in seen:
                out.append(f"# {line}")
            else:
                k, v = wanted[keyword]
                out.append(f"{k} {v}")
                seen.add(keyword)
            continue
        out.append(line)

    if not in_match:
        extra = missing_lines()
        if extra:
            if out and out[-1].strip():
                out.append("")
            out.extend(extra)
    return "\n".join(out) + "\n"


def has_include(main_config_text: str, dropin_dir: Path) -> bool:
    """Check whether sshd_config includes the drop-in directory."""
    for line in main_config_text.splitlines():
        words = re.split(r"[\s=]+", line.strip())
        if len(words) >= 2 and words[0].lower() == "include":
            if any(str(dropin_dir) in w or w.startswith(f"{dropin_dir.name}/") for w in words[1:]):
                return True
    return False


@dataclass
class SSHHardeningGuard:
    """Resolves, renders, verifies and activates the SSH policy."""

    runner: CommandRunner
    mutator: SafeFileMutator
    service: str
    sshd_config: Path
    dropin_dir: Path
    root_home: Path
    backup_dir: Path
    accounts: Optional[list] = field(default=None)

    def resolve(self, port: int, intent: PasswordAuthIntent) -> SSHPolicy:
        has_keys = self.accounts_have_keys() if intent != PasswordAuthIntent.NOT_REQUESTED else False
        policy = resolve_policy(port, intent, has_keys)
        for warning in policy.warnings:
            logger.warning(warning)
        return policy

    def accounts_have_keys(self) -> bool:
        return has_authorized_keys(self.root_home, self.accounts)

    def uses_dropin(self) -> bool:
        if not self.dropin_dir.is_dir():
            return False
        main = self.sshd_config.read_text() if self.sshd_config.exists() else ""
        if not has_include(main, self.dropin_dir):
            logger.warning(f"{self.sshd_config} does not include {self.dropin_dir}, editing it directly")
            return False
        return True

    def render(self, policy: SSHPolicy) -> Mutation:
        """Write the policy as a drop-in fragment, or into the main config."""
        timestamp = self.mutator.backups.timestamp
        if self.uses_dropin():
            target = self.dropin_dir / DROPIN_NAME
            content = render_template(
                "sshd_hardening.conf.j2",
                {"directives": policy.directives(), "timestamp": timestamp},
            )
            return self.mutator.mutate(target, content, mode=0o644)

        header = f"# Managed by hostbase ({timestamp})"
        return self.mutator.transform(
            self.sshd_config,
            lambda existing: apply_directives(existing or "", policy.directives(), header),
            mode=0o644,
        )

    def sshd_binary(self) -> str:
        return shutil.which("sshd") or "/usr/sbin/sshd"

    def verify(self) -> None:
        """Run sshd's own syntax check. Raises SSHConfigError on failure."""
        result = self.runner.run(cmd(self.sshd_binary(), "-t", "-f", self.sshd_config), step="ssh")
        if not result.ok:
            detail = (result.stderr or result.stdout).strip()
            raise SSHConfigError(
                f"sshd configuration check failed: {detail or f'exit {result.returncode}'}. "
                f"Backups are in {self.backup_dir}; inspect and fix the configuration manually."
            )

    def apply(self, port: int, intent: PasswordAuthIntent) -> SSHPolicy:
        """
        Resolve the policy, render it, verify it and restart SSH.

        Returns:
            The policy that was applied
        """
        policy = self.resolve(port, intent)
        logger.info(
            f"Configuring SSH (port={policy.port}, "
            f"password_auth={'yes' if policy.password_auth else 'no'})"
        )
        self.render(policy)
        self.verify()
        restart_service(self.runner, self.service, step="ssh")
        enable_service(self.runner, self.service, step="ssh")
        logger.info(f"SSH configuration applied, {self.service} restarted")
        return policy
