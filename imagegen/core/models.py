# imagegen/core/models.py
"""Data models for the generation core."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from imagegen.core.errors import ValidationError

if TYPE_CHECKING:
    from imagegen.core.resources import ResourceHandle

MAX_PROMPT_LENGTH = 1000
MAX_NEGATIVE_PROMPT_LENGTH = 500
MIN_DIMENSION = 256
MAX_DIMENSION = 2048

DEFAULT_MODEL = "turbo"
DEFAULT_SIZE = 1024
DEFAULT_STYLE = "photorealistic"

# Appended to every prompt, keyed by style tag
STYLE_SUFFIXES: dict[str, str] = {
    "photorealistic": ", photo, detailed",
    "anime": ", anime, vibrant",
    "fantasy-art": ", fantasy, magical",
    "abstract": ", abstract, artistic",
}

FALLBACK_MODEL_IDS: tuple[str, ...] = ("flux", "turbo", "kontext")
DISALLOWED_MODEL_IDS: frozenset[str] = frozenset({"nanobanana"})

_MODEL_DESCRIPTIONS = {
    "flux": "High-quality image generation with excellent detail and coherence",
    "turbo": "Fast image generation optimized for speed and efficiency",
    "kontext": "Context-aware model that understands complex prompts better",
}
_DEFAULT_MODEL_DESCRIPTION = "Advanced AI image generation model"


@dataclass(frozen=True)
class RequestParams:
    """Parameters for a single image generation request.

    Attributes:
        prompt_text: What to draw. Required, at most 1000 characters.
        negative_prompt_text: Optional extra terms appended to the prompt.
        style_tag: One of the STYLE_SUFFIXES keys.
        model_id: Generation model identifier.
        width: Output width in pixels (256-2048).
        height: Output height in pixels (256-2048).
        seed: Optional seed; None means the service picks one.
        enhance: Ask the text service to rewrite the prompt first.
        safe_mode: Ask the service to filter unsafe content.
        no_logo: Ask the service to omit its watermark.
        private: Keep the result out of the service's public feed.
        referrer: Optional referrer tag forwarded to the service.
    """

    prompt_text: str
    negative_prompt_text: str | None = None
    style_tag: str = DEFAULT_STYLE
    model_id: str = DEFAULT_MODEL
    width: int = DEFAULT_SIZE
    height: int = DEFAULT_SIZE
    seed: int | None = None
    enhance: bool = False
    safe_mode: bool = True
    no_logo: bool = True
    private: bool = False
    referrer: str | None = None

    def validate(self) -> None:
        """Check field constraints.

        Raises:
            ValidationError: On the first violated constraint.
        """
        if not isinstance(self.prompt_text, str) or not self.prompt_text.strip():
            raise ValidationError(
                "Prompt is required and must be a non-empty string", "prompt_text"
            )
        if len(self.prompt_text) > MAX_PROMPT_LENGTH:
            raise ValidationError(
                f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH} characters",
                "prompt_text",
            )
        if (
            self.negative_prompt_text is not None
            and len(self.negative_prompt_text) > MAX_NEGATIVE_PROMPT_LENGTH
        ):
            raise ValidationError(
                "Negative prompt exceeds maximum length of "
                f"{MAX_NEGATIVE_PROMPT_LENGTH} characters",
                "negative_prompt_text",
            )
        for name in ("width", "height"):
            value = getattr(self, name)
            if (
                not isinstance(value, int)
                or isinstance(value, bool)
                or not MIN_DIMENSION <= value <= MAX_DIMENSION
            ):
                raise ValidationError(
                    f"Image dimensions must be between {MIN_DIMENSION}x{MIN_DIMENSION}"
                    f" and {MAX_DIMENSION}x{MAX_DIMENSION}",
                    name,
                )
        if self.seed is not None and (
            not isinstance(self.seed, int) or isinstance(self.seed, bool)
        ):
            raise ValidationError("Seed must be an integer", "seed")
        if self.style_tag not in STYLE_SUFFIXES:
            raise ValidationError(
                f"Unknown style '{self.style_tag}'. "
                f"Expected one of: {', '.join(STYLE_SUFFIXES)}",
                "style_tag",
            )
        if not isinstance(self.model_id, str) or not self.model_id.strip():
            raise ValidationError("Model is required", "model_id")


@dataclass(frozen=True)
class ModelEntry:
    """A generation model offered to the user."""

    id: str
    display_name: str
    description: str

    @classmethod
    def from_id(cls, model_id: str) -> ModelEntry:
        """Build an entry from a bare catalog id.

        Args:
            model_id: Identifier as returned by the catalog.

        Returns:
            ModelEntry with capitalized display name and known description.
        """
        return cls(
            id=model_id,
            display_name=model_id[:1].upper() + model_id[1:],
            description=_MODEL_DESCRIPTIONS.get(model_id, _DEFAULT_MODEL_DESCRIPTION),
        )


def fallback_models() -> list[ModelEntry]:
    return [ModelEntry.from_id(model_id) for model_id in FALLBACK_MODEL_IDS]


@dataclass
class CacheEntry:
    """A cached generation result.

    Attributes:
        fingerprint: Key derived from the normalized request.
        resource_handle: Decoded image owned (in part) by the cache.
        final_prompt: Prompt that was actually sent upstream.
        model_id: Model that produced the image.
        request_snapshot: Request as submitted by the caller.
        created_at: Clock reading (seconds) when the entry was stored.
    """

    fingerprint: str
    resource_handle: ResourceHandle
    final_prompt: str
    model_id: str
    request_snapshot: RequestParams
    created_at: float


@dataclass
class GeneratedImage:
    """Result of ImageRequestOrchestrator.generate()."""

    resource_handle: ResourceHandle
    final_prompt: str
    model_id: str
    request_snapshot: RequestParams
    created_at: datetime = field(default_factory=datetime.now)
    fingerprint: str = ""
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary (image bytes excluded)."""
        return {
            "handle_id": self.resource_handle.id,
            "final_prompt": self.final_prompt,
            "model_id": self.model_id,
            "style_tag": self.request_snapshot.style_tag,
            "width": self.request_snapshot.width,
            "height": self.request_snapshot.height,
            "seed": self.request_snapshot.seed,
            "fingerprint": self.fingerprint,
            "cached": self.cached,
            "created_at": self.created_at.isoformat(),
            "mime_type": self.resource_handle.mime_type,
        }
