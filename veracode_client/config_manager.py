"""
Credentials file handling.

Reads API credentials from a YAML file holding one mapping per profile:

    default:
      api_id: ...
      api_key: ...
      api_base: https://analysiscenter.veracode.com/api/5.0/
    ci:
      api_id: ...
      api_key: ...
"""
import os
from typing import Optional

import yaml

from .exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = os.path.join("~", ".veracode", "credentials.yaml")


class ConfigManager:
    """Loads profiles from the Veracode credentials file."""

    def load_config(self, path: str) -> dict:
        """Load configuration from YAML file."""
        with open(os.path.expanduser(path), "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Credentials file {path} must contain a mapping")
        return data

    def discover_config_path(self, config_arg: Optional[str]) -> Optional[str]:
        """Discover the credentials file with priority order."""

        # Priority 1: explicit argument
        if config_arg:
            if os.path.exists(os.path.expanduser(config_arg)):
                return config_arg
            raise FileNotFoundError(f"Config file not found: {config_arg}")

        # Priority 2: VERACODE_CONFIG environment variable
        env_path = os.getenv("VERACODE_CONFIG")
        if env_path and os.path.exists(os.path.expanduser(env_path)):
            return env_path

        # Priority 3: ~/.veracode/credentials.yaml
        if os.path.exists(os.path.expanduser(DEFAULT_CONFIG_PATH)):
            return DEFAULT_CONFIG_PATH

        return None

    def load_profile(self, config_arg: Optional[str] = None, profile: Optional[str] = None) -> dict:
        """Return the settings of one profile, or {} when no file exists."""
        path = self.discover_config_path(config_arg)
        if path is None:
            return {}

        profile = profile or os.getenv("VERACODE_PROFILE") or "default"
        profiles = self.load_config(path)
        if profile not in profiles:
            raise ConfigurationError(f"Profile '{profile}' not found in {path}")

        settings = profiles[profile] or {}
        if not isinstance(settings, dict):
            raise ConfigurationError(f"Profile '{profile}' in {path} must be a mapping")
        return settings
