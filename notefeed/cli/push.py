"""Format-push command.

Runs the push content formatter on a payload file.
"""

from pathlib import Path

import typer

from notefeed.cli.utils import display_warning, handle_errors
from notefeed.services.push_formatter import generate_contents


@handle_errors
def format_push_command(
    payload_path: Path = typer.Argument(..., help="JSON payload file"),
):
    """Show the push title and body a payload would produce."""
    contents = generate_contents(payload_path.read_text())
    if contents is None:
        display_warning("Not a notification payload")
        raise typer.Exit(code=1)

    title, body = contents
    typer.echo(f"title: {title if title is not None else '-'}")
    typer.echo(f"body:  {body if body is not None else '-'}")
