"""
Configuration & Logging
=======================
Loads the YAML configuration (with ``${VAR:default}`` environment
substitution) into EngineSettings and configures structlog.

Recognised engine options (snake_case or camelCase):
- max_projection_distance_meters / maxProjectionDistanceMeters (5000)
- max_facility_distance_meters / maxFacilityDistanceMeters (5000)
- default_facility_category / defaultFacilityCategory ("emergency")
- report_timeout_seconds / reportTimeoutSeconds (2.0)
- maintenance_horizon_days / maintenanceHorizonDays (7)
"""

import logging
import os
import re
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/config.yaml"

_ENV_PATTERN = re.compile(r'\$\{(\w+)(?::([^}]*))?\}')

_CAMEL_ALIASES = {
    'maxProjectionDistanceMeters': 'max_projection_distance_meters',
    'maxFacilityDistanceMeters': 'max_facility_distance_meters',
    'defaultFacilityCategory': 'default_facility_category',
    'reportTimeoutSeconds': 'report_timeout_seconds',
    'maintenanceHorizonDays': 'maintenance_horizon_days',
    'networkPath': 'network_path',
    'facilitiesPath': 'facilities_path',
    'fallbackContacts': 'fallback_contacts',
    'logLevel': 'log_level',
}


def _default_fallback_contacts() -> Dict[str, str]:
    return {'sncf': '3635', 'secours': '112'}


@dataclass
class EngineSettings:
    """Runtime options of the PK locator."""
    max_projection_distance_meters: float = 5000.0
    max_facility_distance_meters: float = 5000.0
    default_facility_category: str = "emergency"
    report_timeout_seconds: float = 2.0
    maintenance_horizon_days: int = 7
    network_path: Optional[str] = "data/network.json"
    facilities_path: Optional[str] = "data/facilities.json"
    fallback_contacts: Dict[str, str] = field(default_factory=_default_fallback_contacts)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        # Values coming from env substitution arrive as strings
        self.max_projection_distance_meters = float(self.max_projection_distance_meters)
        self.max_facility_distance_meters = float(self.max_facility_distance_meters)
        self.report_timeout_seconds = float(self.report_timeout_seconds)
        self.maintenance_horizon_days = int(self.maintenance_horizon_days)
        self.log_level = str(self.log_level).upper()
        self.fallback_contacts = {str(k): str(v) for k, v in (self.fallback_contacts or {}).items()}

        if self.max_projection_distance_meters < 0:
            raise ValueError("max_projection_distance_meters must be >= 0")
        if self.max_facility_distance_meters < 0:
            raise ValueError("max_facility_distance_meters must be >= 0")
        if self.report_timeout_seconds <= 0:
            raise ValueError("report_timeout_seconds must be > 0")

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "EngineSettings":
        """
        Build settings from a parsed configuration document.

        Accepts the sectioned layout of config.yaml (``engine``, ``data``,
        ``logging``, ``fallback_contacts``) as well as a flat mapping.
        """
        flat: Dict[str, Any] = {}
        for key, value in (config or {}).items():
            if key in ('engine', 'data') and isinstance(value, dict):
                flat.update(value)
            elif key == 'logging' and isinstance(value, dict):
                if 'level' in value:
                    flat['log_level'] = value['level']
            else:
                flat[key] = value

        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in flat.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
            else:
                logger.debug("config_option_ignored", option=key)

        return cls(**kwargs)


def _substitute_env(text: str) -> str:
    def replace_env(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2) if match.group(2) else ""
        return os.getenv(var_name, default)

    return _ENV_PATTERN.sub(replace_env, text)


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> EngineSettings:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        EngineSettings. Defaults are used when the file does not exist.
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning("config_file_not_found", path=config_path, using="defaults")
        return EngineSettings()

    with open(path, 'r', encoding='utf-8') as f:
        config_str = f.read()

    document = yaml.safe_load(_substitute_env(config_str)) or {}
    if not isinstance(document, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")

    settings = EngineSettings.from_dict(document)

    # Relative data paths are resolved against the config file's project root
    base = path.parent.parent if path.parent.name == 'config' else path.parent
    for attr in ('network_path', 'facilities_path'):
        value = getattr(settings, attr)
        if value and not Path(value).is_absolute():
            setattr(settings, attr, str(base / value))

    logger.info("config_loaded", path=config_path)
    return settings


def setup_logging(log_level: str = "INFO") -> None:
    """Setup structured logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
