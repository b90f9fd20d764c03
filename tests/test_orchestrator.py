# tests/test_orchestrator.py
"""Tests for ImageRequestOrchestrator.generate()."""

import asyncio
from dataclasses import replace
from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from conftest import FakeFetcher
from imagegen.core.cache import CacheStore, fingerprint
from imagegen.core.errors import TransportError, ValidationError
from imagegen.core.models import RequestParams
from imagegen.core.orchestrator import ImageRequestOrchestrator
from imagegen.core.resources import Owner
from imagegen.utils.logging import get_request_id


class FakeEnhancer:
    """Prompt enhancer returning a fixed answer (or raising)."""

    def __init__(self, answer="an enhanced prompt", error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.prompts: list[str] = []

    async def enhance(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.answer


def _prompt_from_url(url: str) -> str:
    path = urlsplit(url).path
    return unquote(path[len("/prompt/") :])


class TestGenerate:
    @pytest.mark.asyncio
    async def test_generates_and_caches(self, orchestrator, fetcher, cache, resources):
        request = RequestParams(prompt_text="a cat", model_id="turbo")

        result = await orchestrator.generate(request)

        assert fetcher.call_count == 1
        assert result.model_id == "turbo"
        assert result.cached is False
        assert result.final_prompt == "a cat, photo, detailed"
        assert result.resource_handle.mime_type == "image/png"
        assert result.fingerprint == fingerprint(
            "a cat, photo, detailed", "turbo", 1024, 1024
        )
        assert cache.stats()["size"] == 1
        assert resources.owners_of(result.resource_handle) == {Owner.CACHE}

    @pytest.mark.asyncio
    async def test_request_url(self, orchestrator, fetcher):
        request = RequestParams(
            prompt_text="a cat",
            model_id="flux",
            width=512,
            height=768,
            seed=42,
            safe_mode=False,
            private=True,
            referrer="studio",
        )

        await orchestrator.generate(request)

        url = fetcher.urls[0]
        assert url.startswith("https://image.test/prompt/")
        assert _prompt_from_url(url) == "a cat, photo, detailed"
        query = parse_qs(urlsplit(url).query)
        assert query == {
            "model": ["flux"],
            "width": ["512"],
            "height": ["768"],
            "nologo": ["true"],
            "private": ["true"],
            "safe": ["false"],
            "seed": ["42"],
            "referrer": ["studio"],
        }

    @pytest.mark.asyncio
    async def test_negative_prompt_and_style_reach_upstream(self, orchestrator, fetcher):
        request = RequestParams(
            prompt_text="a dragon",
            negative_prompt_text="low quality",
            style_tag="anime",
        )

        result = await orchestrator.generate(request)

        assert fetcher.built_prompts == ["a dragon, low quality, anime, vibrant"]
        assert result.final_prompt == "a dragon, low quality, anime, vibrant"

    @pytest.mark.asyncio
    async def test_correlation_id_is_scoped_to_the_call(self, cache, resources):
        seen = []

        class RecordingFetcher(FakeFetcher):
            async def fetch(self, url):
                seen.append(get_request_id())
                return await super().fetch(url)

        orchestrator = ImageRequestOrchestrator(cache, resources, RecordingFetcher())
        await orchestrator.generate(RequestParams(prompt_text="a cat"))

        assert len(seen[0]) == 12
        assert get_request_id() == ""


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"prompt_text": ""}, "prompt_text"),
            ({"prompt_text": "   "}, "prompt_text"),
            ({"prompt_text": "x" * 1001}, "prompt_text"),
            ({"negative_prompt_text": "x" * 501}, "negative_prompt_text"),
            ({"width": 255}, "width"),
            ({"height": 2049}, "height"),
            ({"seed": 1.5}, "seed"),
            ({"seed": True}, "seed"),
            ({"style_tag": "cubism"}, "style_tag"),
            ({"model_id": ""}, "model_id"),
        ],
    )
    async def test_invalid_request_makes_no_network_call(
        self, orchestrator, fetcher, cache, overrides, field
    ):
        request = replace(RequestParams(prompt_text="a cat"), **overrides)

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.generate(request)

        assert exc_info.value.field == field
        assert fetcher.call_count == 0
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_boundary_values_are_accepted(self, orchestrator, fetcher):
        request = RequestParams(
            prompt_text="x" * 1000,
            negative_prompt_text="y" * 500,
            width=256,
            height=2048,
            seed=0,
        )

        await orchestrator.generate(request)

        assert fetcher.call_count == 1

    @pytest.mark.asyncio
    async def test_negative_seed_is_forwarded(self, orchestrator, fetcher):
        await orchestrator.generate(RequestParams(prompt_text="a cat", seed=-5))

        assert parse_qs(urlsplit(fetcher.urls[0]).query)["seed"] == ["-5"]


class TestCaching:
    @pytest.mark.asyncio
    async def test_identical_request_is_served_from_cache(
        self, orchestrator, fetcher
    ):
        request = RequestParams(prompt_text="a cat", seed=7)
        first = await orchestrator.generate(request)

        second = await orchestrator.generate(
            RequestParams(prompt_text="  A CAT ", seed=7)
        )

        assert fetcher.call_count == 1
        assert second.cached is True
        assert second.resource_handle is first.resource_handle
        assert second.fingerprint == first.fingerprint

    @pytest.mark.asyncio
    async def test_different_seed_misses_cache(self, orchestrator, fetcher):
        await orchestrator.generate(RequestParams(prompt_text="a cat", seed=1))
        await orchestrator.generate(RequestParams(prompt_text="a cat", seed=2))

        assert fetcher.call_count == 2

    @pytest.mark.asyncio
    async def test_expired_entry_is_regenerated(self, orchestrator, fetcher, clock):
        first = await orchestrator.generate(RequestParams(prompt_text="a cat"))
        clock.advance(3601)

        second = await orchestrator.generate(RequestParams(prompt_text="a cat"))

        assert fetcher.call_count == 2
        assert second.cached is False
        assert first.resource_handle.released

    @pytest.mark.asyncio
    async def test_cache_hit_skips_enhancement(self, cache, resources, fetcher):
        enhancer = FakeEnhancer()
        orchestrator = ImageRequestOrchestrator(cache, resources, fetcher, enhancer)
        request = RequestParams(prompt_text="a cat", enhance=True)

        await orchestrator.generate(request)
        cached = await orchestrator.generate(request)

        assert len(enhancer.prompts) == 1
        assert cached.final_prompt == "an enhanced prompt"


class TestFailures:
    @pytest.mark.asyncio
    async def test_transport_error_leaves_cache_untouched(
        self, orchestrator, fetcher, cache, resources, transport_failure
    ):
        fetcher.error = transport_failure

        with pytest.raises(TransportError) as exc_info:
            await orchestrator.generate(RequestParams(prompt_text="a cat"))

        assert exc_info.value.status == 503
        assert len(cache) == 0
        assert resources.live_count() == 0

    @pytest.mark.asyncio
    async def test_failure_then_success(self, orchestrator, fetcher, transport_failure):
        fetcher.error = transport_failure
        with pytest.raises(TransportError):
            await orchestrator.generate(RequestParams(prompt_text="a cat"))

        fetcher.error = None
        result = await orchestrator.generate(RequestParams(prompt_text="a cat"))

        assert result.cached is False
        assert fetcher.call_count == 2

    @pytest.mark.asyncio
    async def test_slow_download_times_out(self, cache, resources):
        class SlowFetcher(FakeFetcher):
            async def fetch(self, url):
                await asyncio.sleep(1)
                return await super().fetch(url)

        orchestrator = ImageRequestOrchestrator(
            cache, resources, SlowFetcher(), generation_timeout=0.01
        )

        with pytest.raises(TransportError) as exc_info:
            await orchestrator.generate(RequestParams(prompt_text="a cat"))

        assert exc_info.value.status is None
        assert "timed out" in str(exc_info.value)
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_undecodable_payload_is_a_transport_error(self, cache, resources):
        fetcher = FakeFetcher(payload=b"<html>oops</html>", content_type="text/html")
        orchestrator = ImageRequestOrchestrator(cache, resources, fetcher)

        with pytest.raises(TransportError):
            await orchestrator.generate(RequestParams(prompt_text="a cat"))

        assert len(cache) == 0
        assert resources.live_count() == 0


class TestEnhancement:
    @pytest.mark.asyncio
    async def test_enhanced_prompt_is_sent_but_key_uses_composed_prompt(
        self, cache, resources, fetcher
    ):
        enhancer = FakeEnhancer("a majestic cat in golden light")
        orchestrator = ImageRequestOrchestrator(cache, resources, fetcher, enhancer)

        result = await orchestrator.generate(
            RequestParams(prompt_text="a cat", enhance=True)
        )

        assert enhancer.prompts == ["a cat, photo, detailed"]
        assert _prompt_from_url(fetcher.urls[0]) == "a majestic cat in golden light"
        assert result.final_prompt == "a majestic cat in golden light"
        assert result.fingerprint == fingerprint(
            "a cat, photo, detailed", "turbo", 1024, 1024
        )

    @pytest.mark.asyncio
    async def test_enhancement_failure_keeps_prompt(self, cache, resources, fetcher):
        enhancer = FakeEnhancer(error=RuntimeError("text service down"))
        orchestrator = ImageRequestOrchestrator(cache, resources, fetcher, enhancer)

        result = await orchestrator.generate(
            RequestParams(prompt_text="a cat", enhance=True)
        )

        assert fetcher.built_prompts == ["a cat, photo, detailed"]
        assert result.final_prompt == "a cat, photo, detailed"

    @pytest.mark.asyncio
    async def test_blank_enhancement_keeps_prompt(self, cache, resources, fetcher):
        orchestrator = ImageRequestOrchestrator(
            cache, resources, fetcher, FakeEnhancer("   ")
        )

        result = await orchestrator.generate(
            RequestParams(prompt_text="a cat", enhance=True)
        )

        assert result.final_prompt == "a cat, photo, detailed"

    @pytest.mark.asyncio
    async def test_enhancement_timeout_keeps_prompt(self, cache, resources, fetcher):
        class SlowEnhancer(FakeEnhancer):
            async def enhance(self, prompt):
                await asyncio.sleep(1)
                return "too late"

        orchestrator = ImageRequestOrchestrator(
            cache, resources, fetcher, SlowEnhancer(), enhancement_timeout=0.01
        )

        result = await orchestrator.generate(
            RequestParams(prompt_text="a cat", enhance=True)
        )

        assert result.final_prompt == "a cat, photo, detailed"
        assert fetcher.call_count == 1

    @pytest.mark.asyncio
    async def test_enhancement_not_requested(self, cache, resources, fetcher):
        enhancer = FakeEnhancer()
        orchestrator = ImageRequestOrchestrator(cache, resources, fetcher, enhancer)

        await orchestrator.generate(RequestParams(prompt_text="a cat"))

        assert enhancer.prompts == []
