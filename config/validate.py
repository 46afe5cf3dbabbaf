"""
Configuration schema validation for the Ethereum Event Engine.

Validates that all required config files exist and contain required keys.
Run at startup to fail fast on misconfiguration.
"""

from typing import Any

from config.loader import get_config


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(key)
                break
            current = current[part]
    return missing


def validate_app_config(config: dict[str, Any]) -> list[str]:
    """Validate app.json has required fields."""
    return _check_keys(
        config,
        [
            "source_name",
            "logging.log_dir",
        ],
        "app.json",
    )


def validate_redis_channels_config(config: dict[str, Any]) -> list[str]:
    """Validate redis_channels.json has required fields."""
    errors = _check_keys(
        config,
        [
            "channels.subscribe",
            "channels.unsubscribe",
            "channels.events",
            "key_prefixes.registry",
        ],
        "redis_channels.json",
    )
    if not errors:
        channels = config["channels"]
        if channels["subscribe"] == channels["unsubscribe"]:
            errors.append("channels: subscribe and unsubscribe must differ")
    return errors


def validate_websocket_config(config: dict[str, Any]) -> list[str]:
    """Validate websocket.json has required fields."""
    return _check_keys(
        config,
        [
            "connection.max_connection_attempts",
            "timeouts.request_timeout_seconds",
            "reconnection.base_delay_seconds",
            "reconnection.max_delay_seconds",
        ],
        "websocket.json",
    )


def validate_registry_config(config: dict[str, Any]) -> list[str]:
    """Validate registry.json has required fields."""
    errors = _check_keys(config, ["backend"], "registry.json")
    if not errors and config["backend"] not in ("redis", "memory"):
        errors.append("backend: must be 'redis' or 'memory'")
    for idx, entry in enumerate(config.get("seed", [])):
        for key in ("address", "type", "eventName", "eventField"):
            if not isinstance(entry, dict) or key not in entry:
                errors.append(f"seed[{idx}].{key}")
    return errors


def validate_all_configs() -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "app.json": (loader.get_app_config, validate_app_config),
        "redis_channels.json": (loader.get_redis_channels, validate_redis_channels_config),
        "websocket.json": (loader.get_websocket_config, validate_websocket_config),
        "registry.json": (loader.get_registry_config, validate_registry_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - missing: {error}")
        raise ConfigValidationError("\n".join(lines))
