# imagegen/interfaces/api/schemas.py
"""Pydantic models for FastAPI request/response validation.

Field constraints (prompt length, dimensions) are enforced by
RequestParams.validate() so that HTTP callers and in-process callers get
the same error messages.
"""

from typing import Any

from pydantic import BaseModel, Field

from imagegen.core.catalog import CatalogResult
from imagegen.core.models import (
    DEFAULT_MODEL,
    DEFAULT_SIZE,
    DEFAULT_STYLE,
    GeneratedImage,
    RequestParams,
)


class GenerateRequest(BaseModel):
    """Request body for POST /generate."""

    prompt: str = Field(..., description="What to draw")
    negative_prompt: str | None = Field(
        None, description="Extra terms appended after the prompt"
    )
    style: str = Field(
        DEFAULT_STYLE,
        description="photorealistic, anime, fantasy-art or abstract",
    )
    model: str = Field(DEFAULT_MODEL, description="Generation model id")
    width: int = Field(DEFAULT_SIZE, description="Width in pixels (256-2048)")
    height: int = Field(DEFAULT_SIZE, description="Height in pixels (256-2048)")
    seed: int | None = Field(None, description="Optional seed")
    enhance: bool = Field(False, description="Rewrite the prompt before generating")
    safe: bool = Field(True, description="Safe mode")
    nologo: bool = Field(True, description="Omit the service watermark")
    private: bool = Field(False, description="Keep out of the public feed")
    referrer: str | None = Field(None, description="Referrer tag")

    def to_params(self) -> RequestParams:
        return RequestParams(
            prompt_text=self.prompt,
            negative_prompt_text=self.negative_prompt,
            style_tag=self.style,
            model_id=self.model,
            width=self.width,
            height=self.height,
            seed=self.seed,
            enhance=self.enhance,
            safe_mode=self.safe,
            no_logo=self.nologo,
            private=self.private,
            referrer=self.referrer,
        )


class GeneratedImageResponse(BaseModel):
    """Metadata of a generated image. Bytes are served by /images/{id}."""

    handle_id: str
    image_url: str
    final_prompt: str
    model_id: str
    style_tag: str
    width: int
    height: int
    seed: int | None = None
    fingerprint: str
    cached: bool
    created_at: str
    mime_type: str

    @classmethod
    def from_image(cls, image: GeneratedImage) -> "GeneratedImageResponse":
        data: dict[str, Any] = image.to_dict()
        return cls(image_url=f"/images/{data['handle_id']}", **data)


class ModelResponse(BaseModel):
    id: str
    display_name: str
    description: str


class CatalogResponse(BaseModel):
    """Response body for GET /models."""

    models: list[ModelResponse] = Field(default_factory=list)
    cached: bool = False
    fallback: bool = False
    error: str | None = None

    @classmethod
    def from_result(cls, result: CatalogResult) -> "CatalogResponse":
        return cls(
            models=[
                ModelResponse(
                    id=m.id, display_name=m.display_name, description=m.description
                )
                for m in result.models
            ],
            cached=result.cached,
            fallback=result.fallback,
            error=result.error,
        )


class CacheStatsResponse(BaseModel):
    size: int
    capacity: int
    max_age: float


class ErrorResponse(BaseModel):
    """Body returned for failed generations."""

    error: str = Field(..., description="Human-readable message")
    field: str | None = Field(None, description="Offending field (validation only)")
    status: int | None = Field(None, description="Upstream HTTP status, if any")
