"""Run the bootstrap orchestrator from a checkout.

Equivalent to the `omniforge` console script, usable without installation:

    python scripts/run_bootstrap.py run --project-root ./app --dry-run
    python scripts/run_bootstrap.py list --project-root ./app
    python scripts/run_bootstrap.py reset --project-root ./app core/nextjs.sh
"""

from __future__ import annotations

import sys
from pathlib import Path


def main() -> int:
    # Allow running this script directly without requiring installation.
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

    from omniforge.cli import main as cli_main

    return cli_main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
