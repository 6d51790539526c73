"""
Case conversion for step payloads.
Step components and the HTTP wire use camelCase; the core uses snake_case.
"""
from typing import Any

from pydantic.alias_generators import to_snake


def dict_keys_to_snake(obj: Any) -> Any:
    """Recursively convert dict keys from camelCase to snake_case."""
    if isinstance(obj, dict):
        return {to_snake(k) if isinstance(k, str) else k: dict_keys_to_snake(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [dict_keys_to_snake(x) for x in obj]
    return obj

