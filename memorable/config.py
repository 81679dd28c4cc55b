"""
Configuration handling for the Memorable photo library.
"""

import json
import os
import re
import sys
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any


DEFAULT_DATABASE_PATH = os.path.join("~", ".memorable", "memorable.db")


@dataclass
class GeoServiceConfig:
    """Geo service endpoints used for reverse geocoding and nearby search."""
    nominatim_url: str = "https://nominatim.openstreetmap.org/reverse"
    overpass_url: str = "https://overpass-api.de/api/interpreter"
    user_agent: str = "Memorable/1.0 (photo library)"
    timeout: float = 10.0


@dataclass
class AppConfig:
    """Main application configuration."""
    database_path: str = DEFAULT_DATABASE_PATH
    geo: GeoServiceConfig = field(default_factory=GeoServiceConfig)
    max_retries: int = 3
    log_level: str = "INFO"
    log_file: Optional[str] = None
    debug_mode: bool = False
    db_busy_timeout: int = 5000
    show_progress: bool = True
    backup_suffix: str = ".backup"
    nearby_radius: int = 100  # meters
    nearby_limit: int = 20


_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}')


def _expand_env(value: Any) -> Any:
    """
    Replace ``${NAME}`` references with environment values, recursing into
    objects and arrays. An unset variable expands to an empty string.

    Args:
        value: Parsed JSON value

    Returns:
        The value with every reference expanded
    """
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if not isinstance(value, str):
        return value

    def lookup(match):
        name = match.group(1)
        if name not in os.environ:
            print(f"Warning: Environment variable {name} not found", file=sys.stderr)
            return ""
        return os.environ[name]

    return _ENV_PATTERN.sub(lookup, value)


def config_from_dict(config_dict: Dict[str, Any]) -> AppConfig:
    """
    Build an AppConfig from a plain dictionary.

    Args:
        config_dict: Dictionary as found in the JSON configuration file

    Returns:
        AppConfig object

    Raises:
        ValueError: If the dictionary contains unknown or invalid fields
    """
    config_dict = _expand_env(dict(config_dict))

    geo_dict = config_dict.pop('geo', {}) or {}
    if not isinstance(geo_dict, dict):
        raise ValueError("Configuration field 'geo' must be an object")

    known_geo = set(GeoServiceConfig.__dataclass_fields__)
    unknown_geo = set(geo_dict) - known_geo
    if unknown_geo:
        raise ValueError(f"Unknown geo configuration fields: {', '.join(sorted(unknown_geo))}")

    known = set(AppConfig.__dataclass_fields__) - {'geo'}
    unknown = set(config_dict) - known
    if unknown:
        raise ValueError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

    if 'log_level' in config_dict:
        config_dict['log_level'] = str(config_dict['log_level']).upper()

    return AppConfig(geo=GeoServiceConfig(**geo_dict), **config_dict)


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load and validate configuration from JSON file.

    A missing path (None) or a path that does not exist yields the defaults.

    Args:
        config_path: Path to the configuration JSON file

    Returns:
        AppConfig object

    Raises:
        ValueError: If the configuration is invalid
        RuntimeError: If the configuration file cannot be loaded
    """
    if not config_path:
        return AppConfig()

    config_path = os.path.abspath(os.path.expanduser(config_path))
    if not os.path.exists(config_path):
        return AppConfig()

    try:
        with open(config_path, 'r', encoding='utf-8') as cfg:
            config_dict = json.load(cfg)
    except (json.JSONDecodeError, IOError) as e:
        raise RuntimeError(f"Failed to load configuration from {config_path}: {str(e)}")

    if not isinstance(config_dict, dict):
        raise ValueError("Configuration root must be a JSON object")

    return config_from_dict(config_dict)


def save_config(config: AppConfig, config_path: str) -> None:
    """
    Save configuration to JSON file.

    Args:
        config: AppConfig object
        config_path: Path to save the configuration

    Raises:
        RuntimeError: If the configuration cannot be saved
    """
    try:
        config_dict = asdict(config)
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(config_dict, f, indent=2)
    except (IOError, TypeError) as e:
        raise RuntimeError(f"Failed to save configuration: {str(e)}")
