import sys

EXIT_INVALID_CONFIG = 2

__all__ = ["main"]


def main() -> None:
    """Console entry point; delegates to `ingestion.cli.main`."""
    # config validates environment overrides on import.
    try:
        from ingestion.cli import main as _cli_main
    except ValueError as exc:
        print(f"❌ Invalid configuration: {exc}")
        sys.exit(EXIT_INVALID_CONFIG)
    sys.exit(_cli_main())


if __name__ == "__main__":
    main()
