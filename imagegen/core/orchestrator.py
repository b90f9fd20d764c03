# imagegen/core/orchestrator.py
"""Generation request orchestration.

generate() validates the request, composes the final prompt, serves
cache hits without network access and otherwise enhances (optionally),
downloads, decodes and caches the image.

A failed generation never touches the cache.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from imagegen.core.cache import CacheStore
from imagegen.core.errors import TransportError
from imagegen.core.models import GeneratedImage, RequestParams
from imagegen.core.prompts import compose_prompt
from imagegen.core.resources import ResourceLifecycleManager
from imagegen.utils.image_handler import ImageDecodeError
from imagegen.utils.logging import get_request_id, request_id_var

if TYPE_CHECKING:
    from imagegen.utils.image_client import ImagePayload

logger = logging.getLogger(__name__)

GENERATION_TIMEOUT = 10.0
ENHANCEMENT_TIMEOUT = 15.0


class Enhancer(Protocol):
    async def enhance(self, prompt: str) -> str: ...


class ImageFetcher(Protocol):
    def build_url(self, prompt: str, request: RequestParams) -> str: ...

    async def fetch(self, url: str) -> ImagePayload: ...


class ImageRequestOrchestrator:
    """Turns RequestParams into a GeneratedImage.

    Args:
        cache: Result cache shared with the UI.
        resources: Handle lifecycle manager.
        fetcher: Image service client.
        enhancer: Optional prompt enhancement collaborator.
        generation_timeout: Bound on the image download, in seconds.
        enhancement_timeout: Bound on the enhancement call, in seconds.
    """

    def __init__(
        self,
        cache: CacheStore,
        resources: ResourceLifecycleManager,
        fetcher: ImageFetcher,
        enhancer: Enhancer | None = None,
        generation_timeout: float = GENERATION_TIMEOUT,
        enhancement_timeout: float = ENHANCEMENT_TIMEOUT,
    ) -> None:
        self._cache = cache
        self._resources = resources
        self._fetcher = fetcher
        self._enhancer = enhancer
        self._generation_timeout = generation_timeout
        self._enhancement_timeout = enhancement_timeout

    async def generate(self, request: RequestParams) -> GeneratedImage:
        """Generate (or recall) an image.

        Args:
            request: Generation parameters.

        Returns:
            GeneratedImage whose handle is owned by the cache.

        Raises:
            ValidationError: If the request is invalid. No I/O is done.
            TransportError: If the download fails or the payload is not
                an image.
        """
        token = None
        if not get_request_id():
            token = request_id_var.set(uuid.uuid4().hex[:12])
        try:
            return await self._generate(request)
        finally:
            if token is not None:
                request_id_var.reset(token)

    async def _generate(self, request: RequestParams) -> GeneratedImage:
        request.validate()

        final_prompt = compose_prompt(request)
        seed = request.seed

        cached = self._cache.get(
            final_prompt, request.model_id, request.width, request.height, seed
        )
        if cached is not None:
            logger.info(
                "Cache hit for %s (model=%s)",
                cached.fingerprint,
                cached.model_id,
                extra={"fingerprint": cached.fingerprint, "model_id": cached.model_id},
            )
            return GeneratedImage(
                resource_handle=cached.resource_handle,
                final_prompt=cached.final_prompt,
                model_id=cached.model_id,
                request_snapshot=cached.request_snapshot,
                created_at=datetime.fromtimestamp(cached.created_at),
                fingerprint=cached.fingerprint,
                cached=True,
            )

        sent_prompt = final_prompt
        if request.enhance and self._enhancer is not None:
            sent_prompt = await self._enhance(final_prompt)

        url = self._fetcher.build_url(sent_prompt, request)
        logger.info(
            "Generating image with model: %s, dimensions: %dx%d",
            request.model_id,
            request.width,
            request.height,
        )

        try:
            payload = await asyncio.wait_for(
                self._fetcher.fetch(url), timeout=self._generation_timeout
            )
        except asyncio.TimeoutError as e:
            logger.error("Image generation timed out after %gs", self._generation_timeout)
            raise TransportError(
                f"Image request timed out after {self._generation_timeout:g}s"
            ) from e
        except TransportError as e:
            logger.error("Image generation error: %s", e)
            raise

        try:
            handle = self._resources.create(payload.data, payload.content_type)
        except ImageDecodeError as e:
            logger.error("Image generation returned an undecodable payload: %s", e)
            raise TransportError(str(e)) from e

        # No await between here and the return: get/evict/set stays atomic
        entry = self._cache.set(
            final_prompt,
            request.model_id,
            request.width,
            request.height,
            seed,
            handle,
            final_prompt=sent_prompt,
            request_snapshot=request,
        )
        logger.info(
            "Cached image %s (%d bytes)",
            entry.fingerprint,
            handle.size_bytes,
            extra={"fingerprint": entry.fingerprint, "handle_id": handle.id},
        )

        return GeneratedImage(
            resource_handle=handle,
            final_prompt=sent_prompt,
            model_id=request.model_id,
            request_snapshot=request,
            created_at=datetime.fromtimestamp(entry.created_at),
            fingerprint=entry.fingerprint,
            cached=False,
        )

    async def _enhance(self, prompt: str) -> str:
        assert self._enhancer is not None
        try:
            enhanced = await asyncio.wait_for(
                self._enhancer.enhance(prompt), timeout=self._enhancement_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Prompt enhancement timed out, using original")
            return prompt
        except Exception as e:
            logger.warning("Failed to enhance prompt, using original: %s", e)
            return prompt

        if not isinstance(enhanced, str) or not enhanced.strip():
            logger.warning("Prompt enhancement returned invalid response, using original")
            return prompt
        return enhanced
