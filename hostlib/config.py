"""Run configuration: defaults, TOML file, interactive answers, CLI flags.

The result is one frozen ``RunConfiguration`` handed to every component.
"""

import tomllib
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from . import prompts
from .errors import ConfigError
from .logs import logger
from .paths import default_backup_dir, default_log_path

DEFAULT_SSH_PORT = 22


class MirrorMode(str, Enum):
    DEFAULT = "default"
    REGIONAL = "regional"
    CUSTOM = "custom"


class PipMirrorMode(str, Enum):
    AUTO = "auto"
    NONE = "none"
    REGIONAL = "regional"
    CUSTOM = "custom"


# Accepted spellings from older answer files
_MODE_ALIASES = {"cn": "regional"}


@dataclass(frozen=True)
class RunConfiguration:
    """Everything the operator asked for, resolved once before any mutation."""

    timestamp: str
    log_path: Path
    backup_dir: Path
    mirror_mode: MirrorMode = MirrorMode.DEFAULT
    custom_mirror_url: str = ""
    ssh_port: int = DEFAULT_SSH_PORT
    disable_password_auth: bool = True
    force_unsafe_ssh: bool = False
    locale: str = "zh_CN.UTF-8"
    timezone: str = ""
    install_container_runtime: bool = True
    custom_registry_mirrors: tuple = ()
    pip_mirror: PipMirrorMode = PipMirrorMode.AUTO
    custom_pip_url: str = ""
    do_upgrade: bool = True
    do_autoremove: bool = True
    dry_run: bool = False

    def summary_lines(self) -> list[str]:
        lines = []
        for key, value in asdict(self).items():
            if isinstance(value, Enum):
                value = value.value
            if key in ("custom_mirror_url", "custom_pip_url") and not value:
                continue
            lines.append(f"  {key}={value}")
        return lines


def parse_port(value: Any, default: int = DEFAULT_SSH_PORT) -> int:
    """
    Validate an SSH port, falling back to ``default`` with a warning.

    Returns:
        Port number between 1 and 65535
    """
    try:
        port = int(str(value).strip())
    except ValueError:
        port = 0
    if isinstance(value, bool) or not 1 <= port <= 65535:
        logger.warning(f"Invalid port: {value}, falling back to {default}")
        return default
    return port


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "y", "yes", "true", "on"):
        return True
    if text in ("0", "n", "no", "false", "off", ""):
        return False
    raise ConfigError(f"Not a yes/no value: {value!r}")


def _parse_mode(enum_cls, value: Any):
    text = _MODE_ALIASES.get(str(value).strip().lower(), str(value).strip().lower())
    try:
        return enum_cls(text)
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise ConfigError(f"Unknown mode {value!r} (expected one of: {choices})") from None


_BOOL_FIELDS = (
    "disable_password_auth",
    "force_unsafe_ssh",
    "install_container_runtime",
    "do_upgrade",
    "do_autoremove",
    "dry_run",
)
_STR_FIELDS = ("custom_mirror_url", "locale", "timezone", "custom_pip_url")

CONFIG_KEYS = frozenset(
    {"mirror_mode", "pip_mirror", "ssh_port", "custom_registry_mirrors", "log_path", "backup_dir"}
    | set(_BOOL_FIELDS)
    | set(_STR_FIELDS)
)


def load_config_file(path: Path) -> dict:
    """
    Load run settings from a TOML file.

    Keys are RunConfiguration field names, all optional.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    unknown = set(data) - CONFIG_KEYS
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {', '.join(sorted(unknown))}")
    return data


def build_configuration(values: dict, timestamp: str) -> RunConfiguration:
    """
    Coerce raw settings (TOML values or prompt answers) into a RunConfiguration.

    Args:
        values: Field name to raw value; missing fields use defaults
        timestamp: Run timestamp, used for default log and backup paths

    Returns:
        RunConfiguration
    """
    kwargs: dict[str, Any] = {}
    for name in _BOOL_FIELDS:
        if name in values:
            kwargs[name] = parse_bool(values[name])
    for name in _STR_FIELDS:
        if name in values and values[name] is not None:
            kwargs[name] = str(values[name]).strip()
    if "mirror_mode" in values:
        kwargs["mirror_mode"] = _parse_mode(MirrorMode, values["mirror_mode"])
    if "pip_mirror" in values:
        kwargs["pip_mirror"] = _parse_mode(PipMirrorMode, values["pip_mirror"])
    if "ssh_port" in values:
        kwargs["ssh_port"] = parse_port(values["ssh_port"])
    if "custom_registry_mirrors" in values:
        mirrors = values["custom_registry_mirrors"]
        if isinstance(mirrors, str):
            mirrors = [m for m in mirrors.replace(",", " ").split() if m]
        kwargs["custom_registry_mirrors"] = tuple(mirrors)

    return RunConfiguration(
        timestamp=timestamp,
        log_path=Path(values.get("log_path") or default_log_path(timestamp)),
        backup_dir=Path(values.get("backup_dir") or default_backup_dir(timestamp)),
        **kwargs,
    )


def gather_interactive(values: dict, timestamp: str) -> dict:
    """
    Ask the operator for each setting, offering current values as defaults.

    Args:
        values: Settings so far (defaults overlaid with the config file)
        timestamp: Run timestamp for default paths

    Returns:
        New settings dict
    """
    current = asdict(build_configuration(values, timestamp))
    answers = dict(values)

    def default(name: str) -> Any:
        value = current[name]
        return value.value if isinstance(value, Enum) else value

    answers["mirror_mode"] = prompts.choose(
        "Package mirror", [m.value for m in MirrorMode], default("mirror_mode")
    )
    if answers["mirror_mode"] == MirrorMode.CUSTOM.value:
        answers["custom_mirror_url"] = prompts.prompt(
            "Custom package mirror host (e.g. https://mirrors.example.com, empty to skip)",
            default("custom_mirror_url"),
        )
        answers["custom_registry_mirrors"] = prompts.prompt(
            "Custom container registry mirrors (comma separated, empty to skip)",
            ",".join(current["custom_registry_mirrors"]),
        )

    answers["ssh_port"] = parse_port(prompts.prompt("SSH port", str(default("ssh_port"))))
    answers["disable_password_auth"] = prompts.confirm(
        "Disable SSH password login? (make sure authorized_keys or console access exist)",
        default("disable_password_auth"),
    )
    answers["locale"] = prompts.prompt("System locale", default("locale"))
    answers["timezone"] = prompts.prompt(
        "Timezone (e.g. Asia/Shanghai, empty to skip)", default("timezone")
    )
    answers["install_container_runtime"] = prompts.confirm(
        "Install Docker?", default("install_container_runtime")
    )
    answers["pip_mirror"] = prompts.choose(
        "pip mirror", [m.value for m in PipMirrorMode], default("pip_mirror")
    )
    if answers["pip_mirror"] == PipMirrorMode.CUSTOM.value:
        answers["custom_pip_url"] = prompts.prompt(
            "Custom pip index-url (e.g. https://pypi.example/simple)", default("custom_pip_url")
        )
    answers["do_upgrade"] = prompts.confirm("Upgrade the system now?", default("do_upgrade"))
    answers["do_autoremove"] = prompts.confirm(
        "Autoremove unused packages after upgrading?", default("do_autoremove")
    )
    answers["log_path"] = prompts.prompt("Log file", str(current["log_path"]))
    answers["backup_dir"] = prompts.prompt("Backup directory", str(current["backup_dir"]))
    answers["force_unsafe_ssh"] = prompts.confirm(
        "Disable password login even if no authorized_keys are found? "
        "(not recommended without console access)",
        default("force_unsafe_ssh"),
    )
    answers["dry_run"] = prompts.confirm(
        "Dry run (only log what would be done)?", default("dry_run")
    )
    return answers


def resolve_configuration(
    timestamp: str,
    config_file: Optional[Path] = None,
    interactive: bool = True,
    dry_run: bool = False,
) -> RunConfiguration:
    """
    Layer defaults, the optional config file, prompts and CLI flags.

    Returns:
        RunConfiguration
    """
    values: dict = {}
    if config_file:
        values.update(load_config_file(config_file))
    if interactive:
        values = gather_interactive(values, timestamp)
    if dry_run:
        values["dry_run"] = True
    return build_configuration(values, timestamp)
