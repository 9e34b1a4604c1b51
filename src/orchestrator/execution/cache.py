"""Per-thread tool result cache.

Entries live in the conversation state (``tool_cache``) so they are scoped to
the thread and survive across turns through checkpoints. An entry is valid
while ``now - inserted_at < ttl``; reading it never refreshes the timestamp.
"""

import json
from typing import Any, Dict, Mapping, Optional


def canonical_args(args: Any) -> str:
    """Deterministic JSON rendering of call arguments."""
    return json.dumps(args or {}, sort_keys=True, separators=(",", ":"), default=str)


def cache_key(name: str, args: Any) -> str:
    """Cache key for a tool call: ``name:canonical_args``."""
    return f"{name}:{canonical_args(args)}"


def make_entry(value: str, inserted_at: float) -> Dict[str, Any]:
    """Build a cache entry."""
    return {"value": value, "inserted_at": inserted_at}


def is_fresh(entry: Mapping[str, Any], now: float, ttl: float) -> bool:
    """Return whether an entry is still within its TTL."""
    inserted_at = entry.get("inserted_at")
    if inserted_at is None:
        return False
    return (now - float(inserted_at)) < ttl


def lookup(
    cache: Optional[Mapping[str, Mapping[str, Any]]], key: str, now: float, ttl: float
) -> Optional[str]:
    """Return the cached value for ``key`` if a fresh entry exists."""
    if not cache:
        return None
    entry = cache.get(key)
    if entry is None or not is_fresh(entry, now, ttl):
        return None
    return entry.get("value")


def prune_expired(
    cache: Optional[Mapping[str, Mapping[str, Any]]], now: float, ttl: float
) -> Dict[str, Dict[str, Any]]:
    """Copy of ``cache`` without expired entries."""
    return {key: dict(entry) for key, entry in (cache or {}).items() if is_fresh(entry, now, ttl)}
