# tests/test_cache.py
"""Tests for the fingerprinted result cache."""

from unittest.mock import patch

import pytest

from conftest import make_image_bytes
from imagegen.core.cache import CacheStore, fingerprint
from imagegen.core.resources import Owner


def _store(cache, resources, prompt, seed=None, model="turbo"):
    handle = resources.create(make_image_bytes())
    entry = cache.set(prompt, model, 1024, 1024, seed, handle)
    return entry, handle


class TestFingerprint:
    def test_case_and_whitespace_insensitive(self):
        assert fingerprint("A Cat", "turbo", 1024, 1024, 7) == fingerprint(
            "a cat ", "turbo", 1024, 1024, 7
        )

    def test_differs_when_any_parameter_differs(self):
        base = fingerprint("a cat", "turbo", 1024, 1024, 7)

        assert fingerprint("a cat", "flux", 1024, 1024, 7) != base
        assert fingerprint("a cat", "turbo", 512, 1024, 7) != base
        assert fingerprint("a cat", "turbo", 1024, 512, 7) != base
        assert fingerprint("a cat", "turbo", 1024, 1024, 8) != base
        assert fingerprint("a cat", "turbo", 1024, 1024, None) != base

    def test_missing_seed_is_deterministic(self):
        assert fingerprint("a dog", "flux", 512, 512) == fingerprint(
            "a dog", "flux", 512, 512, None
        )

    def test_fixed_length(self):
        short = fingerprint("x", "turbo", 256, 256)
        long = fingerprint("x" * 1000, "turbo", 2048, 2048, 123456789)
        assert len(short) == len(long) == 32

    def test_long_prompts_with_shared_prefix_do_not_collide(self):
        prefix = "a very detailed painting of " * 10
        assert fingerprint(prefix + "a cat", "turbo", 1024, 1024) != fingerprint(
            prefix + "a dog", "turbo", 1024, 1024
        )


class TestCacheGet:
    def test_miss_returns_none(self, cache):
        assert cache.get("nothing", "turbo", 1024, 1024) is None

    def test_hit_returns_entry(self, cache, resources):
        entry, handle = _store(cache, resources, "a cat")

        found = cache.get("A CAT", "turbo", 1024, 1024)

        assert found is entry
        assert found.resource_handle is handle
        assert found.model_id == "turbo"

    def test_entry_valid_before_max_age(self, cache, resources, clock):
        _store(cache, resources, "a cat")

        clock.advance(59 * 60)

        assert cache.get("a cat", "turbo", 1024, 1024) is not None

    def test_entry_expired_after_max_age_is_purged_and_released(
        self, cache, resources, clock
    ):
        _, handle = _store(cache, resources, "a cat")
        clock.advance(61 * 60)

        with patch.object(resources, "release", wraps=resources.release) as release:
            assert cache.get("a cat", "turbo", 1024, 1024) is None

        release.assert_called_once_with(handle, Owner.CACHE)
        assert cache.stats()["size"] == 0
        assert handle.released

    def test_expired_entries_are_not_purged_eagerly(self, cache, resources, clock):
        _store(cache, resources, "a cat")
        clock.advance(2 * 3600)

        assert len(cache) == 1

    def test_get_does_not_refresh_insertion_order(self, resources, clock):
        cache = CacheStore(resources, capacity=2, clock=clock)
        _, first = _store(cache, resources, "first")
        _store(cache, resources, "second")

        # Reading "first" must not protect it from eviction
        assert cache.get("first", "turbo", 1024, 1024) is not None
        _store(cache, resources, "third")

        assert cache.get("first", "turbo", 1024, 1024) is None
        assert cache.get("second", "turbo", 1024, 1024) is not None
        assert first.released


class TestCacheSet:
    def test_set_takes_cache_ownership(self, cache, resources):
        _, handle = _store(cache, resources, "a cat")
        assert resources.owners_of(handle) == {Owner.CACHE}

    def test_capacity_eviction_removes_earliest_entry(self, cache, resources):
        handles = [_store(cache, resources, f"prompt {i}")[1] for i in range(50)]
        assert cache.stats() == {"size": 50, "capacity": 50, "max_age": 3600}

        with patch.object(resources, "release", wraps=resources.release) as release:
            _store(cache, resources, "prompt 50")

        release.assert_called_once_with(handles[0], Owner.CACHE)
        assert handles[0].released
        assert not any(h.released for h in handles[1:])
        assert cache.stats()["size"] == 50
        assert cache.get("prompt 0", "turbo", 1024, 1024) is None
        assert cache.get("prompt 1", "turbo", 1024, 1024) is not None

    def test_evicts_before_inserting(self, resources, clock):
        cache = CacheStore(resources, capacity=1, clock=clock)
        _store(cache, resources, "old")
        sizes_at_release = []
        original = resources.release

        def spy(handle, owner=None):
            sizes_at_release.append(len(cache))
            original(handle, owner)

        with patch.object(resources, "release", side_effect=spy):
            _store(cache, resources, "new")

        assert sizes_at_release == [0]
        assert len(cache) == 1

    def test_reset_same_fingerprint_replaces_without_eviction(self, resources, clock):
        cache = CacheStore(resources, capacity=2, clock=clock)
        _, other = _store(cache, resources, "other")
        _, old = _store(cache, resources, "a cat")
        _, new = _store(cache, resources, "A cat ")

        assert len(cache) == 2
        assert old.released
        assert not other.released
        assert cache.get("a cat", "turbo", 1024, 1024).resource_handle is new

    def test_evicted_handle_survives_while_displayed(self, resources, clock):
        cache = CacheStore(resources, capacity=1, clock=clock)
        _, handle = _store(cache, resources, "shown")
        resources.retain(handle, Owner.DISPLAY)

        _store(cache, resources, "next")

        assert not handle.released
        assert resources.owners_of(handle) == {Owner.DISPLAY}

    def test_stores_metadata(self, cache, resources, clock):
        handle = resources.create(make_image_bytes())
        entry = cache.set(
            "a cat, photo, detailed",
            "flux",
            512,
            768,
            42,
            handle,
            final_prompt="an enhanced cat",
        )

        assert entry.final_prompt == "an enhanced cat"
        assert entry.model_id == "flux"
        assert entry.created_at == clock.now
        assert entry.request_snapshot.seed == 42
        assert entry.fingerprint == fingerprint("a cat, photo, detailed", "flux", 512, 768, 42)

    def test_invalid_capacity_rejected(self, resources):
        with pytest.raises(ValueError):
            CacheStore(resources, capacity=0)


class TestCacheClear:
    def test_clear_releases_every_handle(self, cache, resources):
        handles = [_store(cache, resources, f"p{i}")[1] for i in range(3)]

        cache.clear()

        assert len(cache) == 0
        assert all(h.released for h in handles)
        assert resources.live_count() == 0

    def test_clear_expired_only_removes_stale_entries(self, cache, resources, clock):
        _, stale = _store(cache, resources, "stale")
        clock.advance(3000)
        _, fresh = _store(cache, resources, "fresh")
        clock.advance(700)

        removed = cache.clear_expired()

        assert removed == 1
        assert stale.released
        assert not fresh.released
        assert len(cache) == 1
