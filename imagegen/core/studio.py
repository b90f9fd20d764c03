"""Application container.

Builds every core component once, from settings, and hands them out by
reference. There is no module-level cache or history state; whoever owns
the ImageStudio owns that state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from imagegen.config import Settings
from imagegen.core.cache import CacheStore
from imagegen.core.catalog import (
    CatalogSource,
    HttpCatalogSource,
    ModelCatalogAggregator,
    ModelCatalogResolver,
)
from imagegen.core.lifecycle import LifecycleManager
from imagegen.core.models import GeneratedImage, RequestParams
from imagegen.core.orchestrator import ImageRequestOrchestrator
from imagegen.core.prompts import PromptEnhancer
from imagegen.core.resources import ResourceLifecycleManager
from imagegen.utils.image_client import ImageServiceClient

logger = logging.getLogger(__name__)


@dataclass
class ImageStudio:
    """Wired set of core components."""

    settings: Settings
    resources: ResourceLifecycleManager
    cache: CacheStore
    aggregator: ModelCatalogAggregator
    catalog: ModelCatalogResolver
    enhancer: PromptEnhancer
    image_client: ImageServiceClient
    orchestrator: ImageRequestOrchestrator
    http_client: httpx.AsyncClient
    lifecycle: LifecycleManager = field(default_factory=LifecycleManager)

    @classmethod
    def from_settings(cls, settings: Settings) -> ImageStudio:
        """Build all components from settings."""
        http_client = httpx.AsyncClient(
            timeout=settings.catalog_timeout,
            headers={"User-Agent": settings.user_agent},
        )
        resources = ResourceLifecycleManager(history_size=settings.history_size)
        cache = CacheStore(
            resources,
            capacity=settings.cache_max_size,
            max_age=settings.cache_max_age,
        )
        aggregator = ModelCatalogAggregator(
            client=http_client,
            url=settings.models_url,
            ttl=settings.catalog_aggregator_ttl,
            timeout=settings.catalog_timeout,
            user_agent=settings.user_agent,
        )
        source: CatalogSource = aggregator
        if settings.catalog_source_url:
            source = HttpCatalogSource(settings.catalog_source_url, client=http_client)
            logger.info("Reading model catalog from %s", settings.catalog_source_url)
        catalog = ModelCatalogResolver(
            source,
            ttl=settings.catalog_consumer_ttl,
            timeout=settings.catalog_timeout,
            max_retries=settings.catalog_max_retries,
            backoff_base=settings.catalog_backoff_base,
        )
        enhancer = PromptEnhancer(
            base_url=settings.text_api_base_url,
            client=http_client,
            timeout=settings.enhancement_timeout,
            user_agent=settings.user_agent,
        )
        image_client = ImageServiceClient(
            base_url=settings.image_api_base_url,
            timeout=settings.generation_timeout,
            user_agent=settings.user_agent,
        )
        orchestrator = ImageRequestOrchestrator(
            cache,
            resources,
            image_client,
            enhancer=enhancer,
            generation_timeout=settings.generation_timeout,
            enhancement_timeout=settings.enhancement_timeout,
        )

        studio = cls(
            settings=settings,
            resources=resources,
            cache=cache,
            aggregator=aggregator,
            catalog=catalog,
            enhancer=enhancer,
            image_client=image_client,
            orchestrator=orchestrator,
            http_client=http_client,
        )
        # Shutdown runs in reverse: clients close first, handles are freed last
        studio.lifecycle.register("resources", resources)
        studio.lifecycle.register("cache", cache)
        studio.lifecycle.register("http_client", http_client)
        studio.lifecycle.register("image_client", image_client)
        return studio

    async def generate_and_present(self, request: RequestParams) -> GeneratedImage:
        """Generate an image and make it the displayed history head."""
        image = await self.orchestrator.generate(request)
        self.resources.present(image)
        return image

    async def start(self) -> None:
        await self.lifecycle.startup()

    async def close(self) -> None:
        await self.lifecycle.shutdown()
