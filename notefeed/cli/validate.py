"""Validate command for configuration files."""

from pathlib import Path

import typer

from notefeed.cli.utils import display_error, display_success, handle_errors
from notefeed.services.config_manager import ConfigManager


@handle_errors
def validate_command(
    config_path: Path = typer.Argument(..., help="Config file to validate"),
):
    """Validate configuration file syntax and semantics."""
    try:
        manager = ConfigManager(config_path=str(config_path))
        config = manager.load_config()
    except Exception as e:
        display_error(f"Validation failed: {e}")
        raise typer.Exit(code=1)

    missing = [a.owner for a in config.accounts if not a.api_token]
    display_success(f"Configuration is valid ({len(config.accounts)} accounts)")
    if missing:
        display_error(f"No token for: {', '.join(missing)}")
