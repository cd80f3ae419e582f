from __future__ import annotations

import sys

from . import quote_cli


def main() -> int:
    return quote_cli.main()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
