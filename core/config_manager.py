"""
ConfigManager Singleton - Centralized settings for the ABX selector.

Settings live in a JSON file and are addressed with dot-notation keys.
Missing keys fall back to the defaults below, so a partial settings file
is always valid.

Example:
    config = ConfigManager.get_instance()
    blocksize = config.get("audio.blocksize", default=1024)
    config.set("audio.device_id", 3)
"""

import json
from pathlib import Path
from typing import Any, Optional
from utils.logger import get_logger

logger = get_logger(__name__)


class ConfigManager:
    """Singleton for managing application settings."""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: str = "config/settings.json"):
        """
        Initialize ConfigManager (singleton).

        Args:
            config_path: Path to settings JSON file

        Raises:
            RuntimeError: If instance already exists
        """
        if ConfigManager._instance is not None:
            raise RuntimeError(
                "ConfigManager is a singleton. Use ConfigManager.get_instance() instead."
            )

        self.config_path = Path(config_path)
        self.settings = self._load_settings()
        logger.debug(f"📋 ConfigManager initialized: {self.config_path}")

    @classmethod
    def get_instance(cls, config_path: str = "config/settings.json") -> 'ConfigManager':
        """
        Get or create the singleton instance.

        Args:
            config_path: Path to settings JSON file (only used on first call)
        """
        if cls._instance is None:
            cls._instance = cls(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton instance (for testing only)."""
        cls._instance = None

    def _load_settings(self) -> dict:
        """Load settings from JSON file merged over the defaults."""
        settings = self._get_defaults()
        if not self.config_path.exists():
            logger.debug(f"Settings file not found: {self.config_path}, using defaults")
            return settings

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = json.load(f)
        except Exception as e:
            logger.error(f"❌ Failed to load settings: {e}")
            logger.info("📋 Using default settings...")
            return settings

        if not isinstance(loaded, dict):
            logger.error(f"❌ Settings file {self.config_path} is not a JSON object, using defaults")
            return settings

        self._deep_merge(settings, loaded)
        logger.debug(f"✅ Loaded settings from {self.config_path}")
        return settings

    def _get_defaults(self) -> dict:
        """Default settings structure."""
        return {
            "audio": {
                "device_id": None,
                "blocksize": 1024,
                "latency": "high",
                "buffer_blocks": 32,
                "max_inputs": 16,
                "fallback_sample_rate": 44100,
                "preroll_timeout": 5.0,
            },
            "playback": {
                "poll_interval": 0.1,
                "shuffle": False,
            },
        }

    @staticmethod
    def _deep_merge(base: dict, updates: dict):
        for key, value in updates.items():
            if isinstance(value, dict) and key in base and isinstance(base[key], dict):
                ConfigManager._deep_merge(base[key], value)
            else:
                base[key] = value

    def save(self) -> bool:
        """
        Persist settings to disk.

        Returns:
            True if successful, False otherwise
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.settings, f, indent=2, ensure_ascii=False)
            logger.debug(f"💾 Settings saved to {self.config_path}")
            return True
        except Exception as e:
            logger.error(f"❌ Failed to save settings: {e}")
            return False

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get setting by dot-notation path.

        Example:
            >>> config.get("audio.blocksize")
            1024
        """
        value = self.settings
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                logger.debug(f"Setting '{key_path}' not found, using default")
                return default
        return value

    def set(self, key_path: str, value: Any, persist: bool = True) -> bool:
        """
        Set setting by dot-notation path and optionally persist.

        Returns:
            True if successful, False otherwise
        """
        keys = key_path.split('.')
        target = self.settings

        for key in keys[:-1]:
            if key not in target:
                target[key] = {}
            elif not isinstance(target[key], dict):
                logger.error(f"❌ Cannot set '{key_path}': '{key}' is not a dictionary")
                return False
            target = target[key]

        target[keys[-1]] = value
        logger.debug(f"⚙️  Set {key_path} = {value}")

        return self.save() if persist else True

    def merge_settings(self, new_settings: dict, persist: bool = False) -> bool:
        """
        Deep merge new settings into current settings.

        Example:
            >>> config.merge_settings({"audio": {"blocksize": 512}})
        """
        self._deep_merge(self.settings, new_settings)
        logger.debug("🔀 Merged settings")
        return self.save() if persist else True

    def __repr__(self) -> str:
        return f"<ConfigManager path={self.config_path}>"
