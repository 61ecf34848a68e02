import hashlib
import json
from decimal import Decimal
from typing import Any


def _normalize_decimal(value: Decimal) -> str:
    """Plain decimal string without trailing zeros: 50, 50.0 and 50.00 all become "50"."""
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        normalized = normalized.quantize(Decimal(1))
    return format(normalized, "f")


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return _normalize_decimal(value)
    if hasattr(value, "value"):  # enums
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(data: dict[str, Any]) -> str:
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_default
    )


def sha256_hex(text: str | bytes) -> str:
    if isinstance(text, str):
        text = text.encode("utf-8")
    return hashlib.sha256(text).hexdigest()
