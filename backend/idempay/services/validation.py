import uuid

from idempay.exceptions import InvalidKeyFormat


def validate_idempotency_key(key: str | None) -> str:
    if key is None or not key.strip():
        raise InvalidKeyFormat("Idempotency key cannot be null or empty")
    try:
        parsed = uuid.UUID(key)
    except ValueError:
        raise InvalidKeyFormat("Invalid idempotency key format. Must be UUID v4.") from None
    # uuid.UUID accepts braces, urn: prefixes and missing hyphens; require the canonical form.
    # The version nibble is read directly since UUID.version is None for non-RFC 4122 variants.
    if str(parsed) != key.lower() or (parsed.int >> 76) & 0xF != 4:
        raise InvalidKeyFormat("Invalid idempotency key format. Must be UUID v4.")
    return key
