from __future__ import annotations

import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    root = Path(__file__).resolve().parent
    src = root / "src"
    if src.exists():
        # Append (not prepend) to avoid shadowing an installed copy.
        sys.path.append(str(src))


def main() -> int:
    _ensure_src_on_path()
    from streamcall.cli import main as cli_main

    return cli_main()


if __name__ == "__main__":
    raise SystemExit(main())
