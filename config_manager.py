"""
Configuration management module for the budget engine.

This module handles loading and saving configuration values and merges
user settings over the engine defaults (dismissal expiry, default
distribution strategy, budget-safe transfer advice, storage locations).
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from exceptions import ConfigError

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    'database': {
        'data_dir': 'data',
        'path': 'budget_engine.db',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
    'notifications': {
        'dismissal_store': 'dismissed_notifications.json',
        'dismissal_ttl_days': 7,
    },
    'distribution': {
        'default_strategy': 'priority',
    },
    'transfer_advisory': {
        'budget_safe_only': False,
    },
}

CONFIG_FILE = 'config.yaml'


def _merge_defaults(config: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Fill missing keys (recursively for sections) from defaults."""
    for key, value in defaults.items():
        if key not in config or config[key] is None:
            config[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(config[key], dict):
            _merge_defaults(config[key], value)
    return config


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file, merged over the defaults.

    A missing file yields the defaults. A file that is not valid YAML, or
    whose top level is not a mapping, raises ConfigError.

    Args:
        config_path: Path to the YAML file (defaults to config.yaml)

    Returns:
        Configuration dictionary with defaults for missing values
    """
    path = Path(config_path or CONFIG_FILE)
    config: Dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, 'r') as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                "Configuration file is not valid YAML",
                details={"config_path": str(path)},
                original_error=e
            ) from e
        if not isinstance(config, dict):
            raise ConfigError(
                "Configuration file must contain a mapping",
                details={"config_path": str(path)}
            )
    else:
        logger.debug("Config file %s not found; using defaults", path)

    config = _merge_defaults(config, DEFAULT_CONFIG)
    logger.info("Configuration loaded successfully")
    return config


def save_config(config: Dict[str, Any], config_path: Optional[Path] = None) -> bool:
    """
    Save configuration to a YAML file, preserving keys not being updated.

    Args:
        config: Configuration dictionary to save
        config_path: Path to the YAML file (defaults to config.yaml)

    Returns:
        True if successful, False otherwise
    """
    path = Path(config_path or CONFIG_FILE)
    try:
        existing_config: Dict[str, Any] = {}
        if path.exists():
            with open(path, 'r') as f:
                existing_config = yaml.safe_load(f) or {}

        existing_config.update(config)

        with open(path, 'w') as f:
            yaml.dump(existing_config, f, default_flow_style=False)

        logger.info("Configuration saved successfully")
        return True

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error saving configuration: {e}", exc_info=True)
        return False


def get_setting(config: Dict[str, Any], dotted_key: str, default: Any = None) -> Any:
    """
    Read a nested setting such as 'notifications.dismissal_ttl_days'.

    Args:
        config: Configuration dictionary
        dotted_key: Dot-separated path into the configuration
        default: Value returned when any segment is missing

    Returns:
        Setting value or default
    """
    node: Any = config
    for part in dotted_key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node
