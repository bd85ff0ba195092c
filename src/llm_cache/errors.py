import asyncio
from typing import Any, Dict, Optional


class CacheError(Exception):
    error_type = "cache"

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": self.message,
                "remediation_hint": self._get_remediation_hint()
            }
        }

    def _get_remediation_hint(self) -> Optional[str]:
        return None


class KeySerializationError(CacheError, ValueError):
    """Raised when a cache key input cannot be normalized."""
    error_type = "key_serialization"

    def _get_remediation_hint(self) -> Optional[str]:
        return "Use JSON-compatible keys: dicts with string keys, lists, strings, numbers, booleans or None."


class TimeoutExceeded(CacheError, asyncio.TimeoutError):
    """Raised when an operation does not settle before its deadline."""
    error_type = "timeout"

    def __init__(self, message: str = "Operation timed out", timeout: Optional[float] = None):
        self.timeout = timeout
        super().__init__(message)

    def _get_remediation_hint(self) -> Optional[str]:
        return "The model took too long to answer. Retry or shorten the conversation."
