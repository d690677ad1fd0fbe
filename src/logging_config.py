"""Centralized logging configuration with Pydantic Logfire integration."""

import logging
from typing import Any

import logfire
from fastapi import FastAPI

from src.config import Settings

# Keys whose values never reach the logs in clear text
SENSITIVE_KEYS = (
    "token",
    "access_token",
    "client_secret",
    "secret",
    "code",
    "signed_request",
    "password",
    "authorization",
)


def setup_logfire(app: FastAPI, settings: Settings) -> None:
    """
    Initialize and configure Pydantic Logfire for observability.

    Sets up:
    - FastAPI instrumentation (request/response tracing)
    - Pydantic instrumentation (model validation logging)
    - Environment-aware Python logging format
    """
    logfire_config: dict[str, Any] = {
        "environment": settings.env,
    }

    # Only ship to the cloud when a token is configured
    if settings.logfire_token:
        logfire_config["token"] = settings.logfire_token
    else:
        logfire_config["send_to_logfire"] = False

    logfire.configure(**logfire_config)

    logfire.instrument_fastapi(app)
    logfire.instrument_pydantic()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.env == "local":
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
    else:
        # Logfire handles structured formatting
        logging.basicConfig(level=log_level, format="%(message)s")


def mask_pii(value: str | None, mask_char: str = "*") -> str:
    """
    Mask potentially sensitive data in logs.

    Args:
        value: Value to mask
        mask_char: Character to use for masking

    Returns:
        Masked string showing only the first and last two characters
    """
    if not value:
        return ""

    if len(value) <= 4:
        return mask_char * len(value)

    return f"{value[:2]}{mask_char * (len(value) - 4)}{value[-2:]}"


def redact_tokens(data: dict[str, Any]) -> dict[str, Any]:
    """
    Redact credentials from a provider response before logging it.

    Nested dictionaries are redacted recursively; non-string scalars
    are left as-is.
    """
    redacted = data.copy()

    for key, value in data.items():
        if isinstance(value, dict):
            redacted[key] = redact_tokens(value)
        elif key.lower() in SENSITIVE_KEYS and isinstance(value, str):
            redacted[key] = mask_pii(value)

    return redacted
