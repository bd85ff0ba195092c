"""
Deterministic cache keys.

A key input is any JSON-like value (dicts, lists, tuples, strings, numbers,
booleans, None). Mapping keys are sorted at every nesting level before
hashing, so two inputs that differ only in field order share a key.

Keys are the first 16 hex characters of a SHA-256 digest. The truncation
leaves a ~2**-64 collision probability, which is accepted in exchange for
short keys.
"""
import hashlib
import json
from typing import Any, Dict, Iterable, Mapping, Optional

from llm_cache.errors import KeySerializationError

KEY_LENGTH = 16


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:KEY_LENGTH]


def canonicalize(key_data: Any) -> str:
    """
    Serializes key_data to its canonical JSON form.
    Raises KeySerializationError for cycles or values JSON cannot represent.
    """
    try:
        return json.dumps(
            key_data,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        )
    except (TypeError, ValueError, RecursionError) as e:
        raise KeySerializationError(f"Cannot normalize cache key input: {e}") from e


def fingerprint(key_data: Any) -> str:
    return _digest(canonicalize(key_data))


def create_chat_cache_key(
    mode: str,
    message: Optional[str] = None,
    difficulty: Optional[int] = None,
    scenario_id: Optional[str] = None
) -> Dict[str, Any]:
    """Key for chat replies; message case and surrounding whitespace are ignored."""
    return {
        "mode": mode,
        "message": message.lower().strip() if message is not None else None,
        "difficulty": difficulty,
        "scenario_id": scenario_id,
    }


def create_analysis_cache_key(
    messages: Iterable[Mapping[str, str]],
    difficulty: Optional[int] = None
) -> Dict[str, Any]:
    # The whole conversation collapses into one short hash
    transcript = "|".join(f"{m['role']}:{m['content']}" for m in messages)
    return {
        "conversation_hash": _digest(transcript),
        "difficulty": difficulty,
    }
