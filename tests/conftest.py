# tests/conftest.py
"""Shared pytest fixtures for all test modules.

Provides common fixtures for:
- Real image payloads (PNG/JPEG encoded with Pillow)
- A controllable clock for TTL tests
- A fake image fetcher that records every URL it is asked for
- Wired core components (resources, cache, orchestrator)
"""

import io
from collections.abc import Generator

import pytest
from PIL import Image

from imagegen.core.cache import CacheStore
from imagegen.core.errors import TransportError
from imagegen.core.models import RequestParams
from imagegen.core.orchestrator import ImageRequestOrchestrator
from imagegen.core.resources import ResourceLifecycleManager
from imagegen.utils.image_client import ImagePayload, ImageServiceClient
from imagegen.utils.logging import request_id_var


def make_image_bytes(
    color: tuple[int, int, int] = (200, 30, 30),
    size: tuple[int, int] = (8, 8),
    image_format: str = "PNG",
) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=image_format)
    return buffer.getvalue()


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    """Stands in for ImageServiceClient.

    Builds real URLs (via ImageServiceClient.build_url) but serves
    payloads from memory. Set ``error`` to make every fetch fail.
    """

    def __init__(self, payload: bytes | None = None, content_type: str = "image/png"):
        self._builder = ImageServiceClient(base_url="https://image.test")
        self.payload = payload if payload is not None else make_image_bytes()
        self.content_type = content_type
        self.error: Exception | None = None
        self.urls: list[str] = []
        self.built_prompts: list[str] = []

    def build_url(self, prompt: str, request: RequestParams) -> str:
        self.built_prompts.append(prompt)
        return self._builder.build_url(prompt, request)

    async def fetch(self, url: str) -> ImagePayload:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return ImagePayload(data=self.payload, content_type=self.content_type)

    @property
    def call_count(self) -> int:
        return len(self.urls)


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def resources() -> ResourceLifecycleManager:
    return ResourceLifecycleManager(history_size=20)


@pytest.fixture
def cache(resources: ResourceLifecycleManager, clock: FakeClock) -> CacheStore:
    return CacheStore(resources, capacity=50, max_age=3600, clock=clock)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def orchestrator(
    cache: CacheStore, resources: ResourceLifecycleManager, fetcher: FakeFetcher
) -> ImageRequestOrchestrator:
    return ImageRequestOrchestrator(cache, resources, fetcher)


@pytest.fixture
def transport_failure() -> TransportError:
    return TransportError("Service Unavailable", status=503)


@pytest.fixture(autouse=True)
def reset_request_id() -> Generator[None, None, None]:
    """Keep correlation ids from leaking between tests."""
    token = request_id_var.set("")
    yield
    request_id_var.reset(token)
