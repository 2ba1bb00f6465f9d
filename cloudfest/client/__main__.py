"""
Entry point for the registry client.
"""
from .cli import app


def main():
    """Launch the typer command-line client."""
    app()


if __name__ == "__main__":
    main()
