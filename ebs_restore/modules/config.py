import copy
import logging
import os
import yaml
from typing import Any, Dict, Optional

DEFAULT_CONFIG_PATH = 'config.yaml'

DEFAULT_CONFIG: Dict[str, Any] = {
    'aws': {
        'profile': None,
        'region': None,
        'endpoint_url': None,
        'verify_ssl': True,
    },
    'restore': {
        'log_level': 'INFO',
        'log_file': 'ebs_restore.log',
        'wait_timeout': 3600,
        'wait_delay': 15,
        'max_workers': 8,
        'report_dir': 'reports',
        'tag_prefix': 'EbsRestore',
    },
}


class ConfigError(Exception):
    """The configuration file could not be loaded."""


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a YAML file on top of the defaults.

    A missing file is only an error when the path was given explicitly.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        if config_path and config_path != DEFAULT_CONFIG_PATH:
            raise ConfigError(f"Config file not found: {config_path}")
        return copy.deepcopy(DEFAULT_CONFIG)
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return _merge(DEFAULT_CONFIG, data)


def setup_logging(config: Dict[str, Any]) -> None:
    """Setup logging configuration."""
    restore = config['restore']
    logging.basicConfig(
        level=getattr(logging, str(restore['log_level']).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        filename=restore.get('log_file') or None,
    )
