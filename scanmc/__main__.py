"""Module entry point: ``python -m scanmc`` behaves like the ``scanmc`` command."""

import sys

from scanmc.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
