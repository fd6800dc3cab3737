"""Utility helpers for the presentation review service."""

from .security import (
    AuthenticationError,
    TokenPayload,
    create_access_token,
    decode_access_token,
    secrets_match,
)

__all__ = [
    "create_access_token",
    "decode_access_token",
    "secrets_match",
    "AuthenticationError",
    "TokenPayload",
]
