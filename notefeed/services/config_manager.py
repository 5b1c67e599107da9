"""Configuration loading: .env, then YAML with ${VAR} expansion, then pydantic."""

import os
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from notefeed.models.config import NotefeedConfig
from notefeed.utils.exceptions import ConfigValidationError

logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = "config/notefeed.yaml"


def expand_env(text: str) -> str:
    """Replace ${VAR} with its environment value; unknown names are left as is."""
    return Template(text).safe_substitute(os.environ)


class ConfigManager:
    """Reads notefeed.yaml once and caches the validated result."""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH, load_env: bool = True):
        self.config_path = Path(config_path)
        self.load_env = load_env
        self.env_loaded = False
        self._config: Optional[NotefeedConfig] = None

    def load_config(self) -> NotefeedConfig:
        if self._config is not None:
            return self._config

        if self.load_env and not self.env_loaded:
            load_dotenv()
            self.env_loaded = True

        config = self._validate(self._read_mapping())
        logger.info("config_loaded", path=str(self.config_path), accounts=len(config.accounts))
        self._config = config
        return config

    def _read_mapping(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
        try:
            text = self.config_path.read_text()
        except OSError as e:
            raise ConfigValidationError(f"Failed to read config file: {e}") from e
        try:
            data = yaml.safe_load(expand_env(text))
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigValidationError(
                f"Configuration root must be a mapping, got {type(data).__name__}"
            )
        return data

    @staticmethod
    def _validate(data: Dict[str, Any]) -> NotefeedConfig:
        try:
            return NotefeedConfig(**data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid configuration: {e}") from e
