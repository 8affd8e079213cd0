"""
Configuration loading for WikiNexus.

Settings come from built-in defaults, then an optional JSON config file,
then ``WIKINEXUS_*`` environment variables.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_FILE = PROJECT_ROOT / 'config.json'

# File size limits (in bytes)
MAX_UPLOAD_SIZE = 20 * 1024 * 1024  # 20 MB per request

DEFAULT_CONFIG: Dict[str, Any] = {
    'database_uri': f"sqlite:///{PROJECT_ROOT / 'wikinexus.db'}",
    'upload_folder': str(PROJECT_ROOT / 'uploads'),
    'log_dir': str(PROJECT_ROOT / 'logs'),
    'log_max_bytes': 10 * 1024 * 1024,
    'log_backup_count': 5,
    'max_upload_size': MAX_UPLOAD_SIZE,
    'host': '0.0.0.0',
    'port': 8000,
    'debug': False,
}

# Environment variable -> (config key, converter)
ENV_OVERRIDES = {
    'WIKINEXUS_DATABASE_URI': ('database_uri', str),
    'WIKINEXUS_UPLOAD_FOLDER': ('upload_folder', str),
    'WIKINEXUS_LOG_DIR': ('log_dir', str),
    'WIKINEXUS_MAX_UPLOAD_SIZE': ('max_upload_size', int),
    'WIKINEXUS_HOST': ('host', str),
    'WIKINEXUS_PORT': ('port', int),
}


def load_config(config_file: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration: defaults < config file < environment."""
    config = dict(DEFAULT_CONFIG)
    config_file = Path(config_file) if config_file else CONFIG_FILE

    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                config.update(json.load(f))
            logger.debug(f"Loaded config from {config_file}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load config {config_file}: {e}")

    for env_name, (key, convert) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        try:
            config[key] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")

    if os.environ.get('FLASK_ENV') == 'development':
        config['debug'] = True

    return config


def save_config(config: Dict[str, Any], config_file: Optional[Path] = None) -> bool:
    """Save configuration as JSON. Returns False when the file could not be written."""
    config_file = Path(config_file) if config_file else CONFIG_FILE
    try:
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=2)
        logger.info("Configuration saved successfully")
        return True
    except OSError as e:
        logger.error(f"Failed to save config: {e}")
        return False
