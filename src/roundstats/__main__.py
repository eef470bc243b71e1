"""
RoundStats CLI Entry Point

Allows running the package as a module: python -m roundstats
"""


def main():
    """Main entry point for the CLI."""
    from roundstats.cli import app

    app()


if __name__ == "__main__":
    main()
