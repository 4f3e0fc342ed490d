"""
Configuration schema validation for the Pump Log Relay.

Validates that all required config files exist and contain required keys.
Run at startup to fail fast on misconfiguration.
"""

from typing import Any

from config.loader import get_config
from shared.constants import (
    BROADCAST_MODE_ALL,
    BROADCAST_MODE_TOPIC,
    MESSAGE_FORMAT_CLASSIFIED,
    MESSAGE_FORMAT_RAW,
    MINT_ADDRESS_LENGTHS,
)


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
    return _check_keys(config, ["logging.log_dir"], "app.json")


def validate_upstream_config(config: dict[str, Any]) -> list[str]:
    """Validate upstream.json has required fields."""
    return _check_keys(
        config,
        [
            "ws_url",
            "program_address",
            "commitment",
            "encoding",
            "reconnection.connect_retry_delay_seconds",
            "reconnection.reconnect_delay_seconds",
            "keepalive.ping_interval_seconds",
            "keepalive.ping_timeout_seconds",
        ],
        "upstream.json",
    )


def check_topic_routing(broadcast_mode: str, topic_length: Any) -> list[str]:
    """Topic mode routes by mint address, so topics must be able to hold one."""
    if broadcast_mode == BROADCAST_MODE_TOPIC and topic_length not in MINT_ADDRESS_LENGTHS:
        return [
            f"topics.length: {topic_length!r} can never match a mint address "
            f"(expected one of {MINT_ADDRESS_LENGTHS}) with broadcast_mode 'topic'"
        ]
    return []


def validate_downstream_config(config: dict[str, Any]) -> list[str]:
    """Validate downstream.json has required fields and known modes."""
    errors = _check_keys(
        config,
        [
            "host",
            "port",
            "path",
            "topics.length",
            "topics.eligibility_suffix",
            "fanout.send_timeout_seconds",
            "fanout.broadcast_mode",
            "fanout.message_format",
        ],
        "downstream.json",
    )
    if not errors:
        fanout = config["fanout"]
        if fanout["broadcast_mode"] not in (BROADCAST_MODE_TOPIC, BROADCAST_MODE_ALL):
            errors.append(f"fanout.broadcast_mode: unknown mode {fanout['broadcast_mode']!r}")
        if fanout["message_format"] not in (MESSAGE_FORMAT_RAW, MESSAGE_FORMAT_CLASSIFIED):
            errors.append(f"fanout.message_format: unknown format {fanout['message_format']!r}")
        errors.extend(check_topic_routing(fanout["broadcast_mode"], config["topics"]["length"]))
    return errors


def validate_pipeline_config(config: dict[str, Any]) -> list[str]:
    """Validate pipeline.json has required fields."""
    errors = _check_keys(config, ["event_queue.maxsize"], "pipeline.json")
    if not errors:
        maxsize = config["event_queue"]["maxsize"]
        if not isinstance(maxsize, int) or maxsize <= 0:
            errors.append("event_queue.maxsize: must be a positive integer")
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
        "upstream.json": (loader.get_upstream_config, validate_upstream_config),
        "downstream.json": (loader.get_downstream_config, validate_downstream_config),
        "pipeline.json": (loader.get_pipeline_config, validate_pipeline_config),
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
