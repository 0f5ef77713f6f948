from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Ensure the repository root (parent of this package) is on ``sys.path``.

    Running ``python nback_trainer/__main__.py`` directly leaves the package
    undiscoverable; this inserts its parent directory so imports resolve.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root = str(pkg_dir.parent)
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


try:
    # Works when executed as a module: python -m nback_trainer
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    # Works when executed as a script.
    _ensure_repo_root_on_path()
    from nback_trainer.app import run  # type: ignore[attr-defined]


def main() -> int:
    """Entry point for running the trainer from the command line."""
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
