"""Allow ``python -m dbbackup``."""

from dbbackup.cli import main

if __name__ == "__main__":
    main()
