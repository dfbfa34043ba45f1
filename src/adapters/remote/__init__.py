"""Remote service adapters."""

from src.adapters.remote.validation_client import ValidationClient

__all__ = ["ValidationClient"]
