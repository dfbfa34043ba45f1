"""Configuration Manager for the Offline Lookup Core.

This module provides the configuration models for the remote validation
service, local storage locations and dataset expiry policy, and a manager
that loads them from environment variables or a JSON file.

Security Impact:
    - The state encryption key is held as SecretStr and never logged
    - Configuration is validated before use
    - File-based configuration warns on overly permissive permissions

Architecture:
    - Infrastructure layer, isolated from the domain
    - Type-safe configuration using Pydantic models
    - Fail-fast validation prevents runtime errors
"""

import json
import os
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, field_validator, SecretStr

logger = logging.getLogger(__name__)

ENV_PREFIX = "OCL_"

DEFAULT_SERVICE_URL = "https://b-rocky-intranet.onrender.com/api/v1"


class ServiceConfig(BaseModel):
    """Remote validation service settings.

    Parameters:
        base_url: Base URL of the service API
        register_path: Endpoint that registers a device and issues a key
        validate_path: Endpoint that validates a device key
        validity_path: Endpoint that re-confirms a stored key
        hash_path: Endpoint that returns the hash token for a string
        timeout_seconds: Per-request timeout handed to the HTTP transport
    """

    base_url: str = Field(DEFAULT_SERVICE_URL, description="Service base URL")
    register_path: str = Field("/view_generate_key_device")
    validate_path: str = Field("/validate_key_device")
    validity_path: str = Field("/validate_vilidity_key_device")
    hash_path: str = Field("/md5")
    timeout_seconds: float = Field(default=15.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Service URL must start with http:// or https://: {v}")
        return v.rstrip("/")

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"


class StorageConfig(BaseModel):
    """Local storage locations.

    Parameters:
        data_dir: Directory holding backing files and the device state file
        export_dir: Directory for timestamped exports (default: data_dir/exports)
        state_file: Device state file name inside data_dir
        backing_files: Dataset tag -> backing file name inside data_dir
        encryption_key: Optional Fernet key to encrypt the state file at rest
    """

    data_dir: str = Field(default="data")
    export_dir: Optional[str] = Field(default=None)
    state_file: str = Field(default="device_state.json")
    backing_files: Dict[str, str] = Field(
        default_factory=lambda: {
            "rocky": "patients_rocky.csv",
            "sigires": "patients_sigires.csv",
        }
    )
    encryption_key: Optional[SecretStr] = Field(default=None, description="State encryption key (secret)")

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def export_path(self) -> Path:
        return Path(self.export_dir) if self.export_dir else self.data_path / "exports"

    @property
    def state_path(self) -> Path:
        return self.data_path / self.state_file

    def backing_path(self, tag: str) -> Path:
        if tag not in self.backing_files:
            raise ValueError(f"Unknown dataset tag: {tag}")
        return self.data_path / self.backing_files[tag]


class DatasetPolicy(BaseModel):
    """Per-dataset import policy.

    Attributes:
        ttl_days: Time-to-live in days, per dataset tag
        token_checked: Tags whose import file name must match the rolling
            token window (sigires exports keep their upstream names)
    """

    ttl_days: Dict[str, int] = Field(default_factory=lambda: {"rocky": 16, "sigires": 30})
    token_checked: List[str] = Field(default_factory=lambda: ["rocky"])

    def requires_token(self, tag: str) -> bool:
        return tag in self.token_checked

    @field_validator("ttl_days")
    @classmethod
    def validate_ttl(cls, v: Dict[str, int]) -> Dict[str, int]:
        for tag, days in v.items():
            if days <= 0:
                raise ValueError(f"TTL for dataset '{tag}' must be positive, got {days}")
        return v


class AppConfig(BaseModel):
    """Complete application configuration."""

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    datasets: DatasetPolicy = Field(default_factory=DatasetPolicy)


class ConfigManager:
    """Configuration manager for service, storage and dataset settings.

    Example Usage:
        ```python
        # Load from environment variables
        config = ConfigManager.from_environment().get_app_config()

        # Load from file
        config = ConfigManager.from_file("config.json").get_app_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        """Initialize configuration manager.

        Parameters:
            config_data: Configuration dictionary with optional "service",
                         "storage" and "datasets" sections
        """
        self._config_data = config_data
        self._app_config: Optional[AppConfig] = None

    @classmethod
    def from_environment(cls) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - OCL_SERVICE_URL: Validation service base URL
            - OCL_SERVICE_TIMEOUT: Request timeout in seconds
            - OCL_DATA_DIR: Data directory
            - OCL_EXPORT_DIR: Export directory
            - OCL_STATE_FILE: Device state file name
            - OCL_STATE_ENCRYPTION_KEY: Fernet key for the state file (secret)
            - OCL_TTL_ROCKY / OCL_TTL_SIGIRES: Dataset TTL in days

        Returns:
            ConfigManager instance

        Security Impact:
            - A .env file in the working directory is loaded if present
        """
        try:
            from dotenv import load_dotenv
            env_path = Path.cwd() / ".env"
            if env_path.exists():
                load_dotenv(env_path)
                logger.debug(f"Loaded environment variables from {env_path}")
        except ImportError:
            # python-dotenv not installed, skip .env loading
            pass

        def env(name: str) -> Optional[str]:
            return os.getenv(f"{ENV_PREFIX}{name}")

        service: Dict[str, Any] = {}
        if env("SERVICE_URL"):
            service["base_url"] = env("SERVICE_URL")
        if env("SERVICE_TIMEOUT"):
            service["timeout_seconds"] = float(env("SERVICE_TIMEOUT"))

        storage: Dict[str, Any] = {}
        for key, name in (("data_dir", "DATA_DIR"), ("export_dir", "EXPORT_DIR"), ("state_file", "STATE_FILE")):
            if env(name):
                storage[key] = env(name)
        if env("STATE_ENCRYPTION_KEY"):
            storage["encryption_key"] = env("STATE_ENCRYPTION_KEY")

        ttl_days = DatasetPolicy().ttl_days
        for tag in list(ttl_days):
            value = env(f"TTL_{tag.upper()}")
            if value:
                ttl_days[tag] = int(value)

        return cls({"service": service, "storage": storage, "datasets": {"ttl_days": ttl_days}})

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        stat_info = config_file.stat()
        if stat_info.st_mode & 0o077 != 0 and "encryption_key" in config_file.read_text(encoding="utf-8"):
            logger.warning(
                f"Configuration file has overly permissive permissions: {config_path}. "
                "Consider setting to 600 for files holding keys."
            )

        try:
            with open(config_file, 'r', encoding="utf-8") as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        return cls(config_data)

    def get_app_config(self) -> AppConfig:
        """Get validated application configuration."""
        if self._app_config is None:
            self._app_config = AppConfig(**self._config_data)
        return self._app_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Parameters:
            key: Configuration key (supports dot notation, e.g., "service.base_url")
            default: Default value if key not found
        """
        keys = key.split(".")
        value = self._config_data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default


def get_app_config() -> AppConfig:
    """Convenience function to load configuration from the environment."""
    return ConfigManager.from_environment().get_app_config()
