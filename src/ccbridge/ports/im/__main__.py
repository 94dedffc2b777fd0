"""
Entry point for running the listener as a module.

Usage:
    python -m ccbridge.ports.im [--quiet]
"""

from __future__ import annotations

import sys

from .bridge import start_listener


def main() -> int:
    announce = "--quiet" not in sys.argv[1:]
    try:
        start_listener(announce=announce)
        return 0
    except SystemExit as e:
        return int(e.code) if e.code is not None else 1
    except Exception as e:
        print(f"[error] {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
