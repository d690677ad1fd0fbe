"""Random identifiers for Instagram instances."""

import secrets

from src.constants import (
    GENERATED_INSTANCE_NAME_ALPHABET,
    GENERATED_INSTANCE_NAME_LENGTH,
    INSTANCE_TOKEN_BYTES,
)


def generate_instance_token() -> str:
    """Unique per-instance token (hex encoded)."""
    return secrets.token_hex(INSTANCE_TOKEN_BYTES)


def generate_instance_name() -> str:
    """Short internal name used to address an instance."""
    return "".join(
        secrets.choice(GENERATED_INSTANCE_NAME_ALPHABET)
        for _ in range(GENERATED_INSTANCE_NAME_LENGTH)
    )
