"""
Configuration loading utility for AskDoc.

This module loads the YAML configuration file, expands `${VAR}` and
`${VAR:-default}` placeholders from the environment (a `.env` file is read
first), and validates the result. Every problem found is reported at once
so that a misconfigured process fails before any pipeline work begins.
"""

import os
import re
import logging
from pathlib import Path
from typing import Any, List

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .config_models import AppConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand(value: Any, missing: List[str]) -> Any:
    """Recursively substitutes environment placeholders in string scalars."""
    if isinstance(value, dict):
        return {key: _expand(item, missing) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item, missing) for item in value]
    if not isinstance(value, str):
        return value

    def substitute(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        resolved = os.environ.get(name)
        if resolved is None or resolved == "":
            if default is not None:
                return default
            missing.append(name)
            return ""
        return resolved

    expanded = _PLACEHOLDER.sub(substitute, value)
    # A scalar made of a single placeholder keeps its YAML type (ints, bools).
    if _PLACEHOLDER.fullmatch(value) and expanded:
        try:
            return yaml.safe_load(expanded)
        except yaml.YAMLError:
            return expanded
    return expanded


def load_config(
    config_path: str,
    require_transport: bool = False,
    env_file: str = ".env",
    require_generator: bool = False,
) -> AppConfig:
    """
    Loads and validates a YAML configuration file from the specified path.

    Args:
        config_path (str): The path to the YAML configuration file.
        require_transport (bool): Whether the chat transport options are
            mandatory (the query service needs them, ingestion does not).
        require_generator (bool): Whether the generator credential is
            mandatory (only answering questions needs it).
        env_file (str): Optional dotenv file loaded before expansion.

    Returns:
        AppConfig: The validated configuration.

    Raises:
        ConfigError: If the file is missing, unreadable, or any option is
            missing or invalid. The message enumerates every problem.
    """
    path = Path(config_path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found or is not a file: '{path}'")

    if env_file and Path(env_file).is_file():
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from '{env_file}'")

    logger.debug(f"Attempting to load and validate configuration from: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (yaml.YAMLError, IOError) as e:
        raise ConfigError(f"Error reading or parsing YAML file '{path}': {e}") from e

    if not raw:
        raise ConfigError(f"Configuration file is empty: '{path}'")

    missing_vars: List[str] = []
    expanded = _expand(raw, missing_vars)
    problems = [
        f"environment variable '{name}' is not set" for name in dict.fromkeys(missing_vars)
    ]

    try:
        config = AppConfig.model_validate(expanded)
    except ValidationError as e:
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"]) or "<root>"
            problems.append(f"{location}: {error['msg']}")
        raise ConfigError(
            "Configuration validation failed:\n  - " + "\n  - ".join(problems)
        ) from e

    problems.extend(config.missing_options(
            require_transport=require_transport, require_generator=require_generator
        ))
    if problems:
        raise ConfigError(
            "Configuration validation failed:\n  - " + "\n  - ".join(problems)
        )

    logger.info(f"Successfully loaded and validated configuration from: '{path}'")
    return config
