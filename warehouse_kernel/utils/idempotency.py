"""
Idempotency key generation utilities.

Idempotency keys make a retried operation apply its ledger movements at
most once.  Derived keys are built from the caller's key so that every
movement of one operation can be found again on replay.
"""

from uuid import UUID


def generate_idempotency_key(
    producer: str,
    operation: str,
    subject_id: UUID | str,
    *parts: object,
) -> str:
    """
    Generate an idempotency key for one ledger movement.

    Format: producer:operation:subject_id[:part...]

    Example:
        >>> generate_idempotency_key("box", "cancel", box_id, "SKU-9", 0)
        "box:cancel:550e8400-e29b-41d4-a716-446655440000:SKU-9:0"
    """
    key = f"{producer}:{operation}:{subject_id}"
    for part in parts:
        key = f"{key}:{part}"
    return key


def derive_idempotency_key(base_key: str, *parts: object) -> str:
    """Key for the n-th movement caused by one caller-keyed request."""
    return ":".join([base_key, *(str(p) for p in parts)])


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Parse a generated idempotency key into (producer, operation, rest).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]
