"""
Shared case conversion for API responses and provider payload normalization.
Uses Pydantic's alias_generators so PascalCase, camelCase and snake_case
spellings of the same field collapse to one key.
"""
from typing import Any, Optional

from pydantic.alias_generators import to_camel, to_snake


def to_camel_key(s: str) -> str:
    """Convert a single snake_case key to camelCase (first letter lower)."""
    return to_camel(s)


def to_snake_key(s: str) -> str:
    """Convert a single camelCase or PascalCase key to snake_case."""
    return to_snake(s)


def dict_keys_to_camel(obj: Any) -> Any:
    """Recursively convert dict keys from snake_case to camelCase for API responses."""
    if isinstance(obj, dict):
        return {to_camel_key(k): dict_keys_to_camel(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [dict_keys_to_camel(x) for x in obj]
    return obj


def dict_keys_to_snake(obj: Any) -> Any:
    """Recursively convert dict keys to snake_case for input normalization."""
    if isinstance(obj, dict):
        return {to_snake_key(k): dict_keys_to_snake(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [dict_keys_to_snake(x) for x in obj]
    return obj


def normalize_provider_payload(payload: Any) -> dict[str, Any]:
    """
    Canonical shape for a partner response: snake_case keys, with a nested
    ``data``/``result`` envelope merged into the top level.
    Top-level values win over envelope values when both are present and non-empty.
    """
    if not isinstance(payload, dict):
        return {}
    flat = dict_keys_to_snake(payload)
    for envelope in ("data", "result"):
        inner = flat.get(envelope)
        if isinstance(inner, dict):
            for k, v in inner.items():
                if flat.get(k) in (None, ""):
                    flat[k] = v
    return flat


def coalesce(payload: dict[str, Any], *keys: str, default: Optional[Any] = None) -> Any:
    """First non-empty value among keys (each key compared in snake_case)."""
    for key in keys:
        value = payload.get(to_snake_key(key))
        if value not in (None, ""):
            return value
    return default
