"""Main entry point for the crib_hunter package."""
from crib_hunter.cli import cli


def main():
    """Main entry point function."""
    cli()


if __name__ == "__main__":
    main()
