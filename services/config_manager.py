"""
Configuration manager for loading and validating application configuration.
"""
import os
import json
import logging
from dataclasses import fields, is_dataclass
from typing import Dict, Any, Mapping, Optional

import yaml

from models.config import AppConfig
from models.errors import ConfigurationError


# Environment variables overlaid on top of the file configuration
ENV_ENDPOINT = "AZURE_VISION_ENDPOINT"
ENV_KEY = "AZURE_VISION_KEY"
ENV_LOG_LEVEL = "OCR_LOG_LEVEL"
ENV_PORT = "PORT"


class ConfigManager:
    """Manages application configuration loading and validation."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, uses default locations.
            environ: Environment mapping to overlay. Defaults to ``os.environ``.
        """
        self.logger = logging.getLogger(__name__)
        self.config_path = config_path or self._find_config_file()
        self.environ = os.environ if environ is None else environ
        self._config: Optional[AppConfig] = None

    def _find_config_file(self) -> Optional[str]:
        """Find configuration file in standard locations."""
        possible_paths = [
            "config.yaml",
            "config.yml",
            "config.json",
            "settings.yaml",
            "settings.yml",
            "settings.json"
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return None

    def load_config(self) -> AppConfig:
        """
        Load configuration from file or create default configuration.

        Returns:
            AppConfig: Loaded or default configuration, with environment overrides applied

        Raises:
            ValueError: If configuration validation fails
            FileNotFoundError: If specified config file doesn't exist
        """
        if self._config is not None:
            return self._config

        if self.config_path:
            config_data = self._load_config_file(self.config_path)
            config = self._create_config_from_dict(config_data)
        else:
            config = AppConfig()

        self._apply_environment(config)
        config.validate()

        self._config = config
        return self._config

    def _load_config_file(self, file_path: str) -> Dict[str, Any]:
        """
        Load configuration data from file.

        Args:
            file_path: Path to configuration file

        Returns:
            Dict containing configuration data

        Raises:
            ValueError: If file format is not supported
            FileNotFoundError: If file doesn't exist
        """
        if not os.path.exists(file_path):
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        file_ext = os.path.splitext(file_path)[1].lower()

        with open(file_path, 'r', encoding='utf-8') as f:
            if file_ext in ['.yaml', '.yml']:
                data = yaml.safe_load(f) or {}
            elif file_ext == '.json':
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported configuration file format: {file_ext}")

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {file_path}")
        return data

    def _create_config_from_dict(self, config_data: Dict[str, Any]) -> AppConfig:
        """
        Create an AppConfig from nested section dictionaries.

        Each top-level key names a section (``azure``, ``color``, ``server`` ...).
        Unknown sections and keys are logged and ignored so that an older
        config file keeps working after options are removed.

        Args:
            config_data: Raw configuration dictionary

        Returns:
            AppConfig: Normalized application configuration
        """
        app_cfg = AppConfig()
        for section_name, values in config_data.items():
            section = getattr(app_cfg, section_name, None)
            if section is None or not is_dataclass(section):
                self.logger.warning(f"Ignoring unknown config section: {section_name}")
                continue
            if not isinstance(values, dict):
                raise ValueError(f"Config section '{section_name}' must be a mapping")
            known = {f.name: f for f in fields(section)}
            for key, value in values.items():
                if key not in known:
                    self.logger.warning(f"Ignoring unknown config key: {section_name}.{key}")
                    continue
                setattr(section, key, self._coerce(getattr(section, key), value))

        # A single string is accepted where a list is expected
        app_cfg.noise.extra_patterns = self._as_list(app_cfg.noise.extra_patterns)
        app_cfg.output.formats = self._as_list(app_cfg.output.formats)
        return app_cfg

    @staticmethod
    def _as_list(value: Any) -> list:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    @staticmethod
    def _coerce(current: Any, value: Any) -> Any:
        """Coerce a raw value to the type of the field's current value."""
        if value is None or current is None:
            return value
        if isinstance(current, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(current, int) and not isinstance(value, bool):
            return int(value)
        if isinstance(current, float):
            return float(value)
        if isinstance(current, str):
            return str(value)
        return value

    def _apply_environment(self, config: AppConfig) -> None:
        """Overlay deployment settings from environment variables."""
        endpoint = self.environ.get(ENV_ENDPOINT)
        if endpoint:
            config.azure.endpoint = endpoint.strip()
        key = self.environ.get(ENV_KEY)
        if key:
            config.azure.subscription_key = key.strip()
        level = self.environ.get(ENV_LOG_LEVEL)
        if level:
            config.logging.level = level.strip().upper()
        port = self.environ.get(ENV_PORT)
        if port:
            try:
                config.server.port = int(port)
            except ValueError:
                raise ValueError(f"{ENV_PORT} must be an integer, got {port!r}")

    def require_credentials(self, config: Optional[AppConfig] = None) -> AppConfig:
        """
        Ensure the OCR provider endpoint and key are present.

        Called once at startup; a missing credential is a deployment problem,
        never a per-request error.

        Raises:
            ConfigurationError: If the endpoint or the subscription key is missing
        """
        cfg = config or self.get_config()
        missing = []
        if not cfg.azure.endpoint:
            missing.append(ENV_ENDPOINT)
        if not cfg.azure.subscription_key:
            missing.append(ENV_KEY)
        if missing:
            raise ConfigurationError(f"OCR provider credentials not configured: {', '.join(missing)}")
        return cfg

    def save_config(self, config: AppConfig, file_path: Optional[str] = None) -> None:
        """
        Save configuration to file. The subscription key is never written.

        Args:
            config: Configuration to save
            file_path: Path to save file. If None, uses current config_path
        """
        save_path = file_path or self.config_path or "config.yaml"

        os.makedirs(os.path.dirname(save_path) if os.path.dirname(save_path) else ".", exist_ok=True)

        config_dict = config.to_dict()

        file_ext = os.path.splitext(save_path)[1].lower()
        if file_ext not in ('.yaml', '.yml', '.json'):
            raise ValueError(f"Unsupported configuration file format: {file_ext}")

        with open(save_path, 'w', encoding='utf-8') as f:
            if file_ext in ['.yaml', '.yml']:
                yaml.safe_dump(config_dict, f, default_flow_style=False, allow_unicode=True)
            else:
                json.dump(config_dict, f, indent=2, ensure_ascii=False)

    def get_config(self) -> AppConfig:
        """
        Get current configuration, loading if necessary.

        Returns:
            Current AppConfig instance
        """
        if self._config is None:
            return self.load_config()
        return self._config

    def reload_config(self) -> AppConfig:
        """
        Reload configuration from file.

        Returns:
            Reloaded AppConfig instance
        """
        self._config = None
        return self.load_config()

    def create_default_config_file(self, file_path: str = "config.yaml") -> None:
        """
        Create a default configuration file.

        Args:
            file_path: Path where to create the config file
        """
        self.save_config(AppConfig(), file_path)
