"""In-process cache of permission decisions.

Off by default (``rbac_cache_enabled``). Entries are dropped explicitly on
every assignment, revocation and role mutation; the TTL is only an upper
bound on entry age. Decisions that depended on CUSTOM conditions, timed
out, or were faulted are never stored.
"""

import json
import threading
import time
from functools import lru_cache
from typing import Any, Callable, Dict, Hashable, Optional, Tuple
from uuid import UUID

from agencycrm.core.config import get_settings


CacheKey = Tuple[Hashable, ...]


class DecisionCache:
    """Thread-safe TTL map of (agency, user, resource, action, ...) -> decision."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def make_key(
        agency_id: UUID,
        user_id: UUID,
        resource: str,
        action: str,
        resource_id: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[CacheKey]:
        """Build a key, or None when the context cannot be serialized."""
        if context:
            try:
                context_key = json.dumps(context, sort_keys=True, default=str)
            except (TypeError, ValueError):
                return None
        else:
            context_key = ""
        return (
            str(agency_id),
            str(user_id),
            resource,
            action,
            str(resource_id) if resource_id is not None else "",
            context_key,
        )

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def invalidate_user(self, agency_id: UUID, user_id: UUID) -> int:
        agency, user = str(agency_id), str(user_id)
        with self._lock:
            stale = [k for k in self._entries if k[0] == agency and k[1] == user]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def invalidate_agency(self, agency_id: UUID) -> int:
        agency = str(agency_id)
        with self._lock:
            stale = [k for k in self._entries if k[0] == agency]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@lru_cache
def _shared_cache() -> DecisionCache:
    return DecisionCache(ttl_seconds=get_settings().rbac_cache_ttl_seconds)


def get_decision_cache() -> Optional[DecisionCache]:
    """Process-wide cache, or None when caching is disabled."""
    if not get_settings().rbac_cache_enabled:
        return None
    return _shared_cache()
