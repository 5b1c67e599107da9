"""notefeed CLI Package.

Usage:
    python -m notefeed.cli watch --config config/notefeed.yaml
    python -m notefeed.cli page --account alice --until-id 9abc
    python -m notefeed.cli format-push payload.json
    python -m notefeed.cli validate config/notefeed.yaml
"""

import typer

from notefeed.cli.page import page_command
from notefeed.cli.push import format_push_command
from notefeed.cli.validate import validate_command
from notefeed.cli.watch import watch_command

app = typer.Typer(help="notefeed: notification feed for Misskey accounts")

app.command(name="watch")(watch_command)
app.command(name="page")(page_command)
app.command(name="format-push")(format_push_command)
app.command(name="validate")(validate_command)

__all__ = [
    "app",
    "watch_command",
    "page_command",
    "format_push_command",
    "validate_command",
]
