"""Application Settings and Configuration.

This module provides application-wide settings that combine configuration
from the configuration manager with application-specific defaults.
"""

import os
from typing import Optional

from src.infrastructure.config_manager import AppConfig, ConfigManager

# Application metadata
APP_NAME = "Offline-Care-Lookup"
APP_VERSION = "1.1.0"


class Settings:
    """Application settings loaded from configuration manager and environment."""

    def __init__(self):
        """Initialize settings from environment."""
        self._app_config: Optional[AppConfig] = None
        self._config_manager: Optional[ConfigManager] = None

        self.app_name = os.getenv("OCL_APP_NAME", APP_NAME)
        self.log_level = os.getenv("OCL_LOG_LEVEL", "INFO")
        self.log_json = os.getenv("OCL_LOG_JSON", "false").lower() == "true"
        self.log_file = os.getenv("OCL_LOG_FILE")
        self.config_file = os.getenv("OCL_CONFIG_FILE")

    @property
    def config_manager(self) -> ConfigManager:
        """Configuration manager (file if OCL_CONFIG_FILE is set, else environment)."""
        if self._config_manager is None:
            if self.config_file:
                self._config_manager = ConfigManager.from_file(self.config_file)
            else:
                self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def app_config(self) -> AppConfig:
        """Validated application configuration, loaded lazily on first access."""
        if self._app_config is None:
            self._app_config = self.config_manager.get_app_config()
        return self._app_config


# Global settings instance
settings = Settings()
