"""Configuration loading utilities."""

import json
from pathlib import Path
from typing import Any

from x402pay.config.schema import X402Settings

# Keys whose children are free-form names (chain names), not schema fields.
_NAME_KEYED = {"rpc_overrides", "custom_chains"}


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".x402pay" / "config.json"


def load_settings(config_path: Path | None = None) -> X402Settings:
    """
    Load settings from a JSON file, falling back to defaults and environment.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded settings object.
    """
    path = config_path or get_config_path()

    if not path.exists():
        return X402Settings()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return X402Settings.model_validate(convert_keys(data))
    except (json.JSONDecodeError, ValueError) as e:
        raise ValueError(f"Invalid x402pay config at {path}: {e}") from e


def save_settings(settings: X402Settings, config_path: Path | None = None) -> None:
    """Write settings as camelCase JSON."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = convert_to_camel(settings.model_dump(exclude_none=True))
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def convert_keys(data: Any, _preserve: bool = False) -> Any:
    """Convert camelCase keys to snake_case for Pydantic.
    Chain names under rpcOverrides/customChains are kept as-is."""
    if isinstance(data, dict):
        result: dict[str, Any] = {}
        for k, v in data.items():
            new_k = k if _preserve else camel_to_snake(k)
            if _preserve:
                result[new_k] = convert_keys(v)
            else:
                result[new_k] = convert_keys(v, _preserve=new_k in _NAME_KEYED)
        return result
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any, _preserve: bool = False) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        result: dict[str, Any] = {}
        for k, v in data.items():
            new_k = k if _preserve else snake_to_camel(k)
            if _preserve:
                result[new_k] = convert_to_camel(v)
            else:
                result[new_k] = convert_to_camel(v, _preserve=k in _NAME_KEYED)
        return result
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
