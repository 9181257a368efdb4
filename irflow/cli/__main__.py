"""Entry point for the irflow CLI when run as ``python -m irflow.cli``."""

if __name__ == "__main__":
    from irflow.cli.main import main

    main()
