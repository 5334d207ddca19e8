"""
Configuration Module for the Payment Proof Engine.

Loads settings.yaml and exposes its values through dot-notation keys.
Services read their defaults here and accept explicit constructor
overrides, so nothing in the engine depends on the file being present
at any particular path except through this module.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from payproof.utils.exceptions import ConfigurationError

CONFIG_ENV_VAR = "PAYPROOF_CONFIG"


class ConfigurationManager:
    """
    Process-wide access to the loaded settings file.

    The file is chosen from, in order: the explicit path passed on first
    construction, the PAYPROOF_CONFIG environment variable, and the
    settings.yaml shipped next to this module.

    Attributes:
        config_path (Path): Path to the configuration file.

    Example:
        >>> config = ConfigurationManager()
        >>> config.get("thresholds.suggest")
        0.65
    """

    _instance: Optional['ConfigurationManager'] = None

    def __new__(cls, config_path: Optional[str] = None) -> 'ConfigurationManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_path: Optional path to a settings file. Ignored once
                the manager has been initialized; call reset() first to
                switch files.
        """
        if self._initialized:
            return

        if config_path is None:
            config_path = os.environ.get(CONFIG_ENV_VAR)
        if config_path is None:
            self.config_path = Path(__file__).parent / "settings.yaml"
        else:
            self.config_path = Path(config_path)

        self._config: Dict[str, Any] = {}
        self._load_config()
        self._initialized = True

    def _load_config(self) -> None:
        """
        Load configuration from the YAML file.

        Raises:
            ConfigurationError: If the file is missing, unreadable or
                does not contain a mapping.
        """
        if not self.config_path.exists():
            raise ConfigurationError(str(self.config_path), "file not found")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(str(self.config_path), str(e))

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(str(self.config_path), "top level must be a mapping")

        self._config = loaded
        self._resolve_paths()

    def _resolve_paths(self) -> None:
        """Resolve relative entries under paths.* and database.path against the project root."""
        project_root = Path(__file__).resolve().parent.parent.parent

        for key, value in (self._config.get('paths') or {}).items():
            if value and not Path(value).is_absolute():
                self._config['paths'][key] = str(project_root / value)

        database = self._config.get('database') or {}
        db_path = database.get('path')
        if db_path and db_path != ":memory:" and not Path(db_path).is_absolute():
            database['path'] = str(project_root / db_path)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "ocr.timeout_seconds").
            default: Value returned when the key is absent or null.

        Returns:
            Configuration value or default.

        Example:
            >>> config.get("matching.weights.reference")
            40
            >>> config.get("nonexistent.key", "fallback")
            'fallback'
        """
        value: Any = self._config
        try:
            for part in key.split('.'):
                value = value[part]
        except (KeyError, TypeError):
            return default
        return default if value is None else value

    def get_all(self) -> Dict[str, Any]:
        """Return a shallow copy of the complete configuration."""
        return self._config.copy()

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    @classmethod
    def reset(cls) -> None:
        """Drop the loaded instance so the next access reloads (used by tests and the CLI)."""
        cls._instance = None


def get_config(key: str, default: Any = None) -> Any:
    """
    Convenience accessor for configuration values.

    Args:
        key: Configuration key in dot notation.
        default: Default value if the key doesn't exist.

    Returns:
        Configuration value or default.
    """
    return ConfigurationManager().get(key, default)


__all__ = ['ConfigurationManager', 'get_config', 'CONFIG_ENV_VAR']
