"""Main entry point for the bytestep package."""
from bytestep.cli import cli


def main():
    """Main entry point function."""
    cli(auto_envvar_prefix="BYTESTEP")


if __name__ == "__main__":
    main()
