"""
Centralized Configuration
=========================
Centralized configuration values and constants for the OmniForge orchestrator.

This module provides:
- Timeout configuration for ledger locks, installs and unit bodies
- Logging and tracing defaults
- The environment policy for child processes
- Default paths and file names used under a project root
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class TimeoutConfig:
    """Centralized timeout configuration in seconds."""

    # Ledger file lock acquisition
    FILE_LOCK: int = int(os.getenv("OMNI_LOCK_TIMEOUT", "30"))

    # Package manager invocation (pnpm add / npm install)
    INSTALL: int = int(os.getenv("OMNI_INSTALL_TIMEOUT", "900"))

    # Script unit body, matches MAX_CMD_SECONDS in omni.settings
    UNIT: int = int(os.getenv("OMNI_UNIT_TIMEOUT", "960"))


@dataclass(frozen=True)
class PathConfig:
    """File names resolved relative to the project root."""

    STATE_FILE: str = os.getenv("OMNI_STATE_FILE", ".omniforge_state.json")
    ENV_FILE: str = os.getenv("OMNI_ENV_FILE", ".env")
    UNITS_DIR: str = os.getenv("OMNI_UNITS_DIR", "tech_stack")


@dataclass(frozen=True)
class LoggingConfig:
    """Console/file logging configuration.

    LEVEL mirrors the bootstrap scripts: quiet, status, verbose.
    """

    LEVEL: str = os.getenv("OMNI_LOG_LEVEL", os.getenv("LOG_LEVEL", "status"))
    FORMAT: str = os.getenv("OMNI_LOG_FORMAT", os.getenv("LOG_FORMAT", "plain"))
    FILE: str = os.getenv("OMNI_LOG_FILE", "")


@dataclass(frozen=True)
class InstallerConfig:
    """Package manager selection."""

    # Empty means autodetect: pnpm first, then npm
    PACKAGE_MANAGER: str = os.getenv("OMNI_PACKAGE_MANAGER", "")
    EXTRA_FLAGS: str = os.getenv("PNPM_FLAGS", "")


@dataclass(frozen=True)
class SubprocessConfig:
    """Environment handed to unit scripts and the package manager."""

    # When true, children inherit only the allowlisted parent variables
    SANITIZE_ENV: bool = os.getenv("OMNI_SANITIZE_ENV", "false").lower() == "true"
    # Comma-separated names added to the built-in allowlist
    ENV_ALLOWLIST: str = os.getenv("OMNI_ENV_ALLOWLIST", "")

    @property
    def allowlist(self) -> tuple:
        return tuple(name.strip() for name in self.ENV_ALLOWLIST.split(",") if name.strip())


@dataclass(frozen=True)
class TracingConfig:
    """Tracing configuration."""

    SERVICE_NAME: str = "omniforge-orchestrator"
    OTLP_ENDPOINT: str = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/traces")
    ENABLED: bool = os.getenv("ENABLE_TRACING", "false").lower() == "true"


# Global singleton instances
TIMEOUTS = TimeoutConfig()
PATHS = PathConfig()
LOGGING = LoggingConfig()
INSTALLER = InstallerConfig()
SUBPROCESS = SubprocessConfig()
TRACING = TracingConfig()

