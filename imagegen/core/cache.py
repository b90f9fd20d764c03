# imagegen/core/cache.py
"""Fingerprinted result cache with TTL and capacity bounds.

Entries are keyed by a fingerprint of the normalized request. Expired
entries are purged lazily when looked up. When the store is full the
earliest-inserted entry is evicted before the new one goes in; lookups
do not change eviction order.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from imagegen.core.models import CacheEntry, RequestParams
from imagegen.core.resources import Owner, ResourceHandle, ResourceLifecycleManager

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 50
DEFAULT_MAX_AGE = 60 * 60  # seconds
NO_SEED = "no-seed"
FINGERPRINT_LENGTH = 32


def fingerprint(
    prompt: str,
    model_id: str,
    width: int,
    height: int,
    seed: int | None = None,
) -> str:
    """Derive the cache key for a request.

    The prompt is trimmed and lowercased, so "A Cat" and "a cat " share a
    key. Any change to model, size or seed produces a different key.

    Returns:
        32-character hex string.
    """
    seed_part = NO_SEED if seed is None else str(seed)
    raw = f"{prompt.strip().lower()}_{model_id}_{width}_{height}_{seed_part}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class CacheStore:
    """In-memory store of generation results.

    Args:
        resources: Manager that tracks handle ownership. The store is the
            CACHE owner of every handle it holds.
        capacity: Maximum number of entries.
        max_age: Entry lifetime in seconds.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        resources: ResourceLifecycleManager,
        capacity: int = DEFAULT_CAPACITY,
        max_age: float = DEFAULT_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._resources = resources
        self._capacity = capacity
        self._max_age = max_age
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at >= self._max_age

    def get(
        self,
        prompt: str,
        model_id: str,
        width: int,
        height: int,
        seed: int | None = None,
    ) -> CacheEntry | None:
        """Look up a cached result.

        An expired entry is removed and its handle released.

        Returns:
            The entry, or None on a miss.
        """
        key = fingerprint(prompt, model_id, width, height, seed)
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._is_expired(entry, self._clock()):
            del self._entries[key]
            self._resources.release(entry.resource_handle, Owner.CACHE)
            logger.debug("Cache entry %s expired", key, extra={"fingerprint": key})
            return None

        return entry

    def set(
        self,
        prompt: str,
        model_id: str,
        width: int,
        height: int,
        seed: int | None,
        handle: ResourceHandle,
        final_prompt: str | None = None,
        request_snapshot: RequestParams | None = None,
    ) -> CacheEntry:
        """Store a result, evicting the oldest entry if the store is full.

        Args:
            prompt, model_id, width, height, seed: Fingerprint inputs.
            handle: Decoded image; the store becomes one of its owners.
            final_prompt: Prompt sent upstream. Defaults to prompt.
            request_snapshot: Original request, for callers that re-render.

        Returns:
            The stored entry.
        """
        key = fingerprint(prompt, model_id, width, height, seed)

        existing = self._entries.pop(key, None)
        if existing is None:
            while len(self._entries) >= self._capacity:
                evicted_key, evicted = self._entries.popitem(last=False)
                self._resources.release(evicted.resource_handle, Owner.CACHE)
                logger.debug(
                    "Evicted cache entry %s",
                    evicted_key,
                    extra={"fingerprint": evicted_key},
                )

        self._resources.retain(handle, Owner.CACHE)
        if existing is not None and existing.resource_handle is not handle:
            self._resources.release(existing.resource_handle, Owner.CACHE)

        if request_snapshot is None:
            request_snapshot = RequestParams(
                prompt_text=prompt,
                model_id=model_id,
                width=width,
                height=height,
                seed=seed,
            )

        entry = CacheEntry(
            fingerprint=key,
            resource_handle=handle,
            final_prompt=final_prompt if final_prompt is not None else prompt,
            model_id=model_id,
            request_snapshot=request_snapshot,
            created_at=self._clock(),
        )
        self._entries[key] = entry
        return entry

    def clear_expired(self) -> int:
        """Purge every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
        for key in expired:
            entry = self._entries.pop(key)
            self._resources.release(entry.resource_handle, Owner.CACHE)
        if expired:
            logger.info("Purged %d expired cache entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        """Release every held handle and empty the store."""
        for entry in self._entries.values():
            self._resources.release(entry.resource_handle, Owner.CACHE)
        self._entries.clear()

    def shutdown(self) -> None:
        self.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "capacity": self._capacity,
            "max_age": self._max_age,
        }

    def __len__(self) -> int:
        return len(self._entries)
