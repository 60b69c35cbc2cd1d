"""Core utilities for the EventConnect realtime service."""

from .security import create_access_token, decode_access_token

__all__ = ["create_access_token", "decode_access_token"]
