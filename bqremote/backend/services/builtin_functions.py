"""Remote functions shipped with the service."""

from __future__ import annotations

import unicodedata
from datetime import date
from typing import Any, List, Optional

from .registry import FunctionRegistry
from .value_codec import BigQueryType

_KATAKANA_START = ord("ァ")
_KATAKANA_END = ord("ヶ")


def _katakana_to_hiragana(text: str) -> str:
    chars = []
    for ch in text:
        code = ord(ch)
        if _KATAKANA_START <= code <= _KATAKANA_END:
            chars.append(chr(code - 0x60))
        else:
            chars.append(ch)
    return "".join(chars)


def add_integers(*values: Optional[int]) -> Optional[int]:
    """Sum of the non-null arguments; NULL when every argument is NULL."""

    present = [value for value in values if value is not None]
    if not present:
        return None
    return sum(present)


def normalize_text(value: Optional[str]) -> Optional[str]:
    """NFKC + lower case + katakana to hiragana, whitespace collapsed."""

    if value is None:
        return None
    normalized = unicodedata.normalize("NFKC", value).strip().lower()
    normalized = _katakana_to_hiragana(normalized)
    # collapse internal whitespace
    return " ".join(normalized.split())


def days_between(start: Optional[date], end: Optional[date]) -> Optional[int]:
    """Number of days from start to end."""

    if start is None or end is None:
        return None
    return (end - start).days


def bytes_to_hex(value: Optional[bytes]) -> Optional[str]:
    """Lower-case hexadecimal form of a BYTES value."""

    if value is None:
        return None
    return value.hex()


def json_keys(value: Any) -> Optional[List[str]]:
    """Sorted top-level keys of a JSON object."""

    if not isinstance(value, dict):
        return None
    return sorted(value.keys())


def register_builtin_functions(registry: FunctionRegistry) -> FunctionRegistry:
    registry.register(
        "add_integers",
        add_integers,
        args=[BigQueryType.INT64],
        returns=BigQueryType.INT64,
        variadic=True,
    )
    registry.register(
        "normalize_text",
        normalize_text,
        args=[BigQueryType.STRING],
        returns=BigQueryType.STRING,
    )
    registry.register(
        "days_between",
        days_between,
        args=[BigQueryType.DATE, BigQueryType.DATE],
        returns=BigQueryType.INT64,
    )
    registry.register(
        "bytes_to_hex",
        bytes_to_hex,
        args=[BigQueryType.BYTES],
        returns=BigQueryType.STRING,
    )
    registry.register(
        "json_keys",
        json_keys,
        args=[BigQueryType.JSON],
        returns=BigQueryType.JSON,
    )
    return registry


def build_default_registry() -> FunctionRegistry:
    return register_builtin_functions(FunctionRegistry())
