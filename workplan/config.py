"""
Configuration management for workplan.

Loads settings from config.ini with environment variable overrides.
Provides centralized configuration for the database, notification sink and
hierarchy rules.
"""

import configparser
import os
from pathlib import Path
from typing import Any, Dict, Optional

from workplan.logging_config import get_logger

logger = get_logger(__name__)

_DEFAULT_DATABASE_URL = f"sqlite+aiosqlite:///{Path.home() / '.workplan' / 'workplan.db'}"


class Config:
    """Application configuration manager."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config file, defaults to ~/.workplan/config.ini
        """
        self.config_path = config_path or self._default_config_path()
        self._config = configparser.ConfigParser()
        self._load()

    def _default_config_path(self) -> Path:
        """Get default config path."""
        return Path.home() / ".workplan" / "config.ini"

    def _load(self):
        """Load configuration from file."""
        if self.config_path.exists():
            try:
                self._config.read(self.config_path)
                logger.info(f"Loaded configuration from {self.config_path}")
            except configparser.Error as e:
                logger.warning(f"Failed to read config file: {e}. Using defaults.")
        else:
            logger.debug(f"Config file not found at {self.config_path}. Using defaults.")

    def get_database_config(self) -> Dict[str, Any]:
        """
        Get database configuration with environment overrides.

        Environment variables take precedence over config file:
        - WORKPLAN_DATABASE_URL
        - WORKPLAN_DATABASE_ECHO

        Returns:
            Dictionary with database configuration
        """
        echo_env = os.getenv('WORKPLAN_DATABASE_ECHO', '').lower()
        echo = (
            echo_env == 'true'
            if echo_env
            else self._config.getboolean('database', 'echo', fallback=False)
        )

        config = {
            'url': os.getenv('WORKPLAN_DATABASE_URL') or
                   self._config.get('database', 'url', fallback=_DEFAULT_DATABASE_URL),
            'echo': echo,
        }

        logger.debug(f"Database config: url={config['url']}, echo={config['echo']}")

        return config

    def get_notification_config(self) -> Dict[str, Any]:
        """
        Get notification sink configuration with environment overrides.

        Environment variables take precedence over config file:
        - WORKPLAN_NOTIFICATION_SINK (log/database)

        Returns:
            Dictionary with notification configuration
        """
        sink = (
            os.getenv('WORKPLAN_NOTIFICATION_SINK') or
            self._config.get('notifications', 'sink', fallback='database')
        ).lower()

        if sink not in ('log', 'database'):
            logger.warning(f"Unknown notification sink '{sink}', falling back to 'log'")
            sink = 'log'

        logger.debug(f"Notification config: sink={sink}")

        return {'sink': sink}

    def get_hierarchy_config_path(self) -> Path:
        """
        Get the path of the hierarchy rules TOML file.

        Environment variable WORKPLAN_HIERARCHY_CONFIG takes precedence.

        Returns:
            Path to the hierarchy rules file (may not exist)
        """
        raw = (
            os.getenv('WORKPLAN_HIERARCHY_CONFIG') or
            self._config.get('hierarchy', 'rules_file', fallback=None)
        )
        if raw:
            return Path(raw).expanduser()
        return Path.home() / ".workplan" / "hierarchy.toml"

    def get(self, section: str, key: str, fallback: Any = None) -> Any:
        """
        Get configuration value with fallback.

        Args:
            section: Config section name
            key: Config key name
            fallback: Default value if not found

        Returns:
            Configuration value or fallback
        """
        return self._config.get(section, key, fallback=fallback)

    def get_bool(self, section: str, key: str, fallback: bool = False) -> bool:
        """Get boolean configuration value."""
        return self._config.getboolean(section, key, fallback=fallback)

    def get_int(self, section: str, key: str, fallback: int = 0) -> int:
        """Get integer configuration value."""
        return self._config.getint(section, key, fallback=fallback)

    def has_section(self, section: str) -> bool:
        """Check if config section exists."""
        return self._config.has_section(section)

    def sections(self) -> list:
        """Get list of all configuration sections."""
        return self._config.sections()
