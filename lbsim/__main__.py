"""
Module entrypoint for `python -m lbsim`.
Delegates to the CLI main in lbsim.cli.
"""

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
