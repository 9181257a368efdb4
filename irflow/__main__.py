"""Allow ``python -m irflow``."""

from irflow.cli.main import main

if __name__ == "__main__":
    main()
