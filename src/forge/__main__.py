"""Forge CLI entry point."""

from forge.cli import app

if __name__ == "__main__":
    app()
