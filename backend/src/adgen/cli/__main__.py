"""CLI entry point for adgen.cli module.

Enables execution via: python -m adgen.cli
"""

from adgen.cli.recover_jobs import main

if __name__ == "__main__":
    raise SystemExit(main())
