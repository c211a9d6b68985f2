"""Shared serialization helpers for camelCase conversion.

Provides the ``snake_to_camel`` alias generator used by every
Pydantic model config, so models dump to the camelCase JSON shape
consumed by the downstream report layer with ``by_alias=True``.
"""

from __future__ import annotations


def snake_to_camel(name: str) -> str:
    """Convert a snake_case string to camelCase.

    Args:
        name: A snake_case identifier such as
            ``"unused_percent"``.

    Returns:
        The camelCase equivalent, e.g. ``"unusedPercent"``.
    """
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])
