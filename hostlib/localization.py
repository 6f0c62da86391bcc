"""Locale and timezone configuration."""

import re
import shutil
from pathlib import Path
from typing import Optional

from .commands import CommandRunner, cmd
from .files import SafeFileMutator
from .logs import logger
from .packages import PackageManager


def locale_charset(locale: str) -> str:
    """Charset column for locale.gen: 'zh_CN.UTF-8' -> 'UTF-8'."""
    if "." in locale:
        return locale.split(".", 1)[1].split("@", 1)[0]
    return "ISO-8859-1"


def locale_language(locale: str) -> str:
    """Language part of a locale: 'zh_CN.UTF-8' -> 'zh'."""
    return re.split(r"[_.@]", locale, maxsplit=1)[0]


def enable_locale_gen(text: Optional[str], locale: str) -> str:
    """
    Enable ``locale`` in locale.gen content.

    A commented-out entry is uncommented; a missing one is appended.
    """
    text = text or ""
    entry = f"{locale} {locale_charset(locale)}"
    pattern = re.compile(rf"^#\s*{re.escape(locale)}(\s+\S+)?\s*$", re.MULTILINE)
    active = re.compile(rf"^{re.escape(locale)}(\s+\S+)?\s*$", re.MULTILINE)

    if active.search(text):
        return text
    if pattern.search(text):
        return pattern.sub(lambda m: f"{locale}{m.group(1) or ' ' + locale_charset(locale)}", text, count=1)
    if text and not text.endswith("\n"):
        text += "\n"
    return text + entry + "\n"


class LocaleConfigurator:
    """Generates and selects the system locale; sets the timezone."""

    def __init__(
        self,
        pm: PackageManager,
        runner: CommandRunner,
        mutator: SafeFileMutator,
        locale_gen: Path,
        zoneinfo_dir: Path,
    ):
        self.pm = pm
        self.runner = runner
        self.mutator = mutator
        self.locale_gen = locale_gen
        self.zoneinfo_dir = zoneinfo_dir

    def _set_lang(self, locale: str) -> bool:
        if self.pm.name == "apt" and shutil.which("update-locale"):
            command = cmd("update-locale", f"LANG={locale}")
        else:
            command = cmd("localectl", "set-locale", f"LANG={locale}")
        result = self.runner.run(command, step="locale")
        if not result.ok:
            logger.warning(f"Could not set LANG={locale}, continuing")
        return result.ok

    def configure_locale(self, locale: str) -> bool:
        """
        Make ``locale`` available and the system default. Never raises.

        Returns:
            True if the locale was selected
        """
        if not locale:
            logger.info("No locale requested, skipping")
            return False
        logger.info(f"Setting system locale to {locale}")

        candidates = [
            [p.format(lang=locale_language(locale)) for p in packages]
            for packages in self.pm.locale_candidates
        ]
        if candidates:
            self.pm.install_first(candidates)

        if self.pm.uses_locale_gen:
            if not self.locale_gen.exists():
                logger.warning(f"{self.locale_gen} does not exist, skipping locale-gen")
                return False
            self.mutator.transform(self.locale_gen, lambda text: enable_locale_gen(text, locale))
            if not self.runner.run(cmd("locale-gen"), step="locale").ok:
                logger.warning("locale-gen failed, continuing")

        return self._set_lang(locale)

    def configure_timezone(self, timezone: str) -> bool:
        """Set the timezone if the zone exists. Never raises."""
        if not timezone:
            logger.info("No timezone requested, skipping")
            return False
        if not (self.zoneinfo_dir / timezone).is_file():
            logger.warning(f"Timezone file {self.zoneinfo_dir / timezone} does not exist, skipping")
            return False
        logger.info(f"Setting timezone to {timezone}")
        result = self.runner.run(cmd("timedatectl", "set-timezone", timezone), step="timezone")
        if not result.ok:
            logger.warning(f"Could not set timezone {timezone}, continuing")
        return result.ok
