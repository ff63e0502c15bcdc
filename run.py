"""Launch the gh-portfolio CLI from a source checkout, without installing it first."""

from __future__ import annotations

import sys
from pathlib import Path

SRC_DIR = Path(__file__).resolve().parent / "src"


def _use_checkout() -> None:
    if not (SRC_DIR / "gh_portfolio").is_dir():
        raise SystemExit(f"gh_portfolio sources not found under {SRC_DIR}")
    # the checkout wins over an older installed copy
    if str(SRC_DIR) not in sys.path:
        sys.path.insert(0, str(SRC_DIR))


if __name__ == "__main__":
    _use_checkout()
    from gh_portfolio.app.cli import main

    sys.exit(main(sys.argv[1:]))
