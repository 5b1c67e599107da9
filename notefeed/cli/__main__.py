"""CLI entry point.

Allows running the CLI as a module: python -m notefeed.cli
"""

from notefeed.cli import app

if __name__ == "__main__":
    app()
