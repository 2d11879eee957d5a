"""
Veracode Environment Detector

Resolves client configuration from environment variables, falling back to
the credentials file for anything the environment does not set.
"""

import os
import re
from typing import List, Optional
from urllib.parse import urlparse

from .config_manager import ConfigManager
from .exceptions import ConfigurationError
from .models import DEFAULT_API_BASE, DEFAULT_TIMEOUT, VeracodeConfig


class VeracodeEnvironmentDetector:
    """Detects and validates Veracode client configuration"""

    REQUIRED_VARS = {
        "VERACODE_API_KEY_ID": "api_id",
        "VERACODE_API_KEY_SECRET": "api_key",
    }

    OPTIONAL_VARS = {
        "VERACODE_API_BASE": ("api_base", DEFAULT_API_BASE, str),
        "VERACODE_TIMEOUT": ("timeout", DEFAULT_TIMEOUT, int),
    }

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self.config_manager = config_manager or ConfigManager()

    def get_missing_variables(self) -> List[str]:
        """Get list of missing required environment variables"""
        return [var for var in self.REQUIRED_VARS if not os.getenv(var)]

    def get_config(self, config_path: Optional[str] = None, profile: Optional[str] = None) -> VeracodeConfig:
        """Build a VeracodeConfig; environment variables override the file."""
        settings = {}
        if self.get_missing_variables() or config_path:
            settings = self.config_manager.load_profile(config_path, profile)

        for var, param in self.REQUIRED_VARS.items():
            value = os.getenv(var)
            if value:
                settings[param] = value

        missing = [param for param in self.REQUIRED_VARS.values() if not settings.get(param)]
        if missing:
            raise ConfigurationError(
                "Missing Veracode credentials: set "
                f"{', '.join(self.get_missing_variables())} or provide a credentials file"
            )

        for var, (param, default_value, var_type) in self.OPTIONAL_VARS.items():
            value = os.getenv(var, settings.get(param))
            if value is None:
                settings[param] = default_value
                continue
            try:
                settings[param] = var_type(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {var}: {value}") from e

        config = VeracodeConfig(
            api_id=str(settings["api_id"]),
            api_key=str(settings["api_key"]),
            api_base=settings["api_base"],
            timeout=settings["timeout"],
        )
        self.validate_config(config)
        return config

    def validate_config(self, config: VeracodeConfig):
        if not self._validate_api_base(config.api_base):
            raise ConfigurationError(f"Invalid API base URL: {config.api_base}")
        if not self._validate_key_format(config.api_key):
            raise ConfigurationError("VERACODE_API_KEY_SECRET must be a hex string")
        if config.timeout <= 0:
            raise ConfigurationError("Timeout must be a positive number of seconds")

    def _validate_api_base(self, url: Optional[str]) -> bool:
        """Validate API base URL format"""
        if not url:
            return False
        parsed = urlparse(url)
        return all([
            parsed.scheme in ['http', 'https'],
            parsed.netloc,
            parsed.path.endswith('/'),
        ])

    def _validate_key_format(self, key: Optional[str]) -> bool:
        if not key:
            return False
        return bool(re.match(r"^(?:[a-fA-F0-9]{2})+$", key))

    def get_environment_summary(self) -> dict:
        """Get summary of environment configuration for debugging"""
        summary = {
            "missing_variables": self.get_missing_variables(),
            "detected_variables": {}
        }

        # Mask secrets
        for var in self.REQUIRED_VARS:
            value = os.getenv(var)
            if value and "SECRET" in var:
                summary["detected_variables"][var] = f"{value[:4]}...{value[-4:]}"
            else:
                summary["detected_variables"][var] = value

        for var in self.OPTIONAL_VARS:
            value = os.getenv(var)
            if value:
                summary["detected_variables"][var] = value

        return summary
