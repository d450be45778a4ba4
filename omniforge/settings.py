"""
Settings Resolver
=================
Resolves named settings from layered sources, first match wins:

1. explicit per-run overrides (CLI --set KEY=VALUE, a parent process)
2. the project settings/environment file (KEY=VALUE lines)
3. compiled-in defaults

Resolution is read-only: the environment file is parsed, never written.
Results are cached per resolver instance, and a resolver lives for one run,
so edits to the environment file are picked up by the next run.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

from loguru import logger

from omniforge.errors import MissingRequiredSetting

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Defaults shipped with the orchestrator (omni.settings)
DEFAULT_SETTINGS: Dict[str, str] = {
    "LOG_LEVEL": "status",
    "LOG_FORMAT": "plain",
    "DOCKER_REQUIRED": "true",
    "ENABLE_DOCKER": "true",
    "DOCKER_EXEC_MODE": "container",
    "DOCKER_COMPOSE_FILE": "docker-compose.yml",
    "APP_SERVICE_NAME": "app",
    "APP_ENV_FILE": ".env",
    "ENABLE_REDIS": "false",
    "REDIS_PORT": "6379",
    "DOCKER_REGISTRY": "ghcr.io",
    "DOCKER_BUILDKIT": "1",
    "GIT_SAFETY": "true",
    "ALLOW_DIRTY": "false",
    "NON_INTERACTIVE": "false",
    "MAX_CMD_SECONDS": "960",
    "NODE_VERSION": "20.18.1",
    "PNPM_VERSION": "9.15.0",
    "POSTGRES_VERSION": "16",
    "SRC_DIR": "src",
    "PUBLIC_DIR": "public",
    "E2E_DIR": "e2e",
    "DEV_PORT": "3000",
}


class SettingSource(str, Enum):
    OVERRIDE = "override"
    ENV_FILE = "environment-file"
    DEFAULT = "default"


@dataclass(frozen=True)
class Setting:
    key: str
    value: str
    source: SettingSource


def parse_env_text(text: str) -> Dict[str, str]:
    """Parse KEY=VALUE lines leniently.

    Blank lines, comments, lines without '=' and invalid keys are ignored.
    An 'export ' prefix and one layer of matching quotes are stripped.
    Later duplicates win.
    """
    values: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        elif " #" in value:
            value = value.split(" #", 1)[0].rstrip()
        if not _KEY_RE.match(key):
            continue
        values[key] = value
    return values


def load_env_file(path: Optional[Union[str, Path]]) -> Dict[str, str]:
    """Read an environment file; a missing file is an empty layer."""
    if path is None:
        return {}
    env_path = Path(path)
    if not env_path.exists():
        logger.debug(f"Settings file not found, skipping: {env_path}")
        return {}
    try:
        text = env_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read settings file {env_path}: {e}")
        return {}
    return parse_env_text(text)


def parse_override_pairs(pairs: Iterable[str]) -> Dict[str, str]:
    """Turn ['KEY=VALUE', ...] into a dict.

    Raises:
        ValueError: When a pair has no '=' or an invalid key.
    """
    out: Dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Override must look like KEY=VALUE: {pair!r}")
        key, value = pair.split("=", 1)
        key = key.strip()
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid settings key in override: {key!r}")
        out[key] = value
    return out


class SettingsResolver:
    """Layered, read-only settings lookup for one run."""

    def __init__(
        self,
        overrides: Optional[Mapping[str, str]] = None,
        env_file: Optional[Union[str, Path]] = None,
        defaults: Optional[Mapping[str, str]] = None,
    ):
        self.overrides: Dict[str, str] = dict(overrides or {})
        self.env_file = Path(env_file) if env_file is not None else None
        self.defaults: Dict[str, str] = dict(DEFAULT_SETTINGS if defaults is None else defaults)
        self._env_values: Optional[Dict[str, str]] = None
        self._cache: Dict[str, Optional[Setting]] = {}

    def _env_layer(self) -> Dict[str, str]:
        if self._env_values is None:
            self._env_values = load_env_file(self.env_file)
        return self._env_values

    def lookup(self, key: str) -> Optional[Setting]:
        """Resolve key with its source tag, or None when no layer has it."""
        if key in self._cache:
            return self._cache[key]

        setting: Optional[Setting] = None
        if key in self.overrides:
            setting = Setting(key, self.overrides[key], SettingSource.OVERRIDE)
        elif key in self._env_layer():
            setting = Setting(key, self._env_layer()[key], SettingSource.ENV_FILE)
        elif key in self.defaults:
            setting = Setting(key, self.defaults[key], SettingSource.DEFAULT)

        self._cache[key] = setting
        return setting

    def resolve(self, key: str) -> Tuple[str, bool]:
        """Return (value, found). Value is '' when not found."""
        setting = self.lookup(key)
        if setting is None:
            return "", False
        return setting.value, True

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value, found = self.resolve(key)
        return value if found else default

    def require(self, keys: Iterable[str], unit_id: Optional[str] = None) -> Dict[str, str]:
        """Resolve every key or raise for the first one that is missing.

        Nothing is returned until all keys resolve, so callers can run this
        before any side effect.

        Raises:
            MissingRequiredSetting: For the first unresolved key.
        """
        resolved: Dict[str, str] = {}
        for key in keys:
            setting = self.lookup(key)
            if setting is None:
                raise MissingRequiredSetting(key, unit_id=unit_id)
            resolved[key] = setting.value
            logger.debug(f"Setting {key} resolved from {setting.source.value}")
        return resolved
