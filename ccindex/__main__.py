"""Entry point for ``python -m ccindex``."""

from ccindex.cli.main import main

if __name__ == "__main__":
    main()
