"""
Configuration loader for the Ethereum Event Engine.

Provides centralized configuration management with .env overrides.
JSON files live next to this module in the config/ directory.

Usage:
    from config.loader import get_config, get_channel

    config = get_config()
    ws_config = config.get_websocket_config()
    channel = get_channel("subscribe")
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the event engine.

    Loads configuration from JSON files in the config/ directory.
    All accessor methods are cached via @lru_cache.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self, config_dir: Optional[Path] = None):
        self._config_dir = config_dir or _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings (logging, source name)."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_redis_channels(self) -> Dict[str, Any]:
        """Load Redis channel definitions."""
        return _load_json(self._config_dir / "redis_channels.json")

    @lru_cache(maxsize=1)
    def get_websocket_config(self) -> Dict[str, Any]:
        """Load WebSocket connection settings."""
        return _load_json(self._config_dir / "websocket.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load timing intervals and timeouts."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_registry_config(self) -> Dict[str, Any]:
        """Load event registry backend settings and seed mappings."""
        return _load_json(self._config_dir / "registry.json")

    # ------------------------------------------------------------------
    # Redis channel/key helpers
    # ------------------------------------------------------------------

    def get_channel_name(self, channel_key: str) -> str:
        """Get a Redis channel name by key."""
        channels = self.get_redis_channels()
        return channels.get("channels", {}).get(channel_key, f"eth-engine-{channel_key}")

    def get_key_prefix(self, key_name: str) -> str:
        """Get a Redis key prefix by name."""
        channels = self.get_redis_channels()
        return channels.get("key_prefixes", {}).get(key_name, f"eth-engine:{key_name}")

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()


def get_channel(channel_key: str) -> str:
    """Get a Redis channel name by key (convenience function)."""
    return get_config().get_channel_name(channel_key)


def get_key_prefix(key_name: str) -> str:
    """Get a Redis key prefix by name (convenience function)."""
    return get_config().get_key_prefix(key_name)
