# imagegen/core/__init__.py
"""Generation core.

Provides:
- Fingerprinted result cache with TTL and FIFO capacity eviction
- Model catalog aggregation and retrying resolution
- Request orchestration with optional prompt enhancement
- Ownership tracking for decoded images and the history buffer
"""

from imagegen.core.cache import CacheStore, fingerprint
from imagegen.core.catalog import (
    CatalogPayload,
    CatalogResult,
    HttpCatalogSource,
    ModelCatalogAggregator,
    ModelCatalogResolver,
    RetryPhase,
    RetryState,
    filter_model_ids,
)
from imagegen.core.errors import GenerationError, TransportError, ValidationError
from imagegen.core.models import (
    CacheEntry,
    GeneratedImage,
    ModelEntry,
    RequestParams,
)
from imagegen.core.orchestrator import ImageRequestOrchestrator
from imagegen.core.prompts import PromptEnhancer, compose_prompt
from imagegen.core.resources import Owner, ResourceHandle, ResourceLifecycleManager

__all__ = [
    "CacheEntry",
    "CacheStore",
    "CatalogPayload",
    "CatalogResult",
    "GeneratedImage",
    "GenerationError",
    "HttpCatalogSource",
    "ImageRequestOrchestrator",
    "ModelCatalogAggregator",
    "ModelCatalogResolver",
    "ModelEntry",
    "Owner",
    "PromptEnhancer",
    "RequestParams",
    "ResourceHandle",
    "ResourceLifecycleManager",
    "RetryPhase",
    "RetryState",
    "TransportError",
    "ValidationError",
    "compose_prompt",
    "filter_model_ids",
    "fingerprint",
]
