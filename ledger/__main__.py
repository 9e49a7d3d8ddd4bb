"""
Entry point for running ledger as a module.

Usage:
    python -m ledger [args]

This is equivalent to the `ledger` console script.
"""

import sys

from ledger.cli import main

if __name__ == "__main__":
    sys.exit(main())
