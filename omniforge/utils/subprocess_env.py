"""
Subprocess Environment Utilities
================================
Builds environment dictionaries for unit scripts and package manager calls.

By default children inherit the parent environment. With
OMNI_SANITIZE_ENV=true only BASE_ALLOWLIST (plus OMNI_ENV_ALLOWLIST) is
inherited, so credentials in the operator's shell do not reach unit scripts.
"""

from __future__ import annotations

import os
from typing import Dict, Iterable, Mapping, Optional

from omniforge.config import SUBPROCESS

# Inherited even when the environment is sanitized; pnpm/npm and docker need these.
BASE_ALLOWLIST = frozenset(
    {
        "PATH",
        "HOME",
        "USER",
        "SHELL",
        "LANG",
        "LC_ALL",
        "LC_CTYPE",
        "TERM",
        "TMPDIR",
        "SSL_CERT_FILE",
        "SSL_CERT_DIR",
        "NODE_OPTIONS",
        "NODE_EXTRA_CA_CERTS",
        "NPM_CONFIG_REGISTRY",
        "PNPM_HOME",
        "COREPACK_HOME",
        "DOCKER_HOST",
        "DOCKER_BUILDKIT",
        "INSIDE_OMNI_DOCKER",
    }
)


def build_unit_env(
    *,
    extra: Optional[Mapping[str, str]] = None,
    sanitize_env: Optional[bool] = None,
    allowlist: Optional[Iterable[str]] = None,
    parent: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Return an environment dict for a child process.

    Args:
        extra: Values layered on top (resolved settings, run flags).
        sanitize_env: Inherit only allowlisted parent keys. Defaults to OMNI_SANITIZE_ENV.
        allowlist: Extra allowlist keys, on top of BASE_ALLOWLIST and OMNI_ENV_ALLOWLIST.
        parent: Parent environment, defaults to os.environ.
    """
    parent = os.environ if parent is None else parent
    sanitize_env = SUBPROCESS.SANITIZE_ENV if sanitize_env is None else sanitize_env

    if sanitize_env:
        keys = set(BASE_ALLOWLIST)
        keys.update(SUBPROCESS.allowlist)
        keys.update(key for key in (allowlist or ()) if isinstance(key, str) and key)
        env = {k: parent[k] for k in keys if k in parent}
    else:
        env = dict(parent)

    for key, value in (extra or {}).items():
        if value is None:
            continue
        env[str(key)] = str(value)

    return env
