"""Module entrypoint for ``python -m containerdisks``."""

import sys

from containerdisks import cli

if __name__ == "__main__":
    sys.exit(cli.main())
