# imagegen/core/errors.py
"""Error types surfaced by the generation pipeline.

Only generation failures reach callers. Catalog failures are absorbed by
the resolver and prompt enhancement failures are logged and dropped.
"""


class GenerationError(Exception):
    """Base class for errors returned from ImageRequestOrchestrator.generate()."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GenerationError):
    """Request parameters are invalid. No I/O was performed."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class TransportError(GenerationError):
    """The image request failed on the network or upstream side.

    Attributes:
        status: Upstream HTTP status, or None for timeouts and connection
            failures.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        if self.status is not None:
            return f"HTTP {self.status}: {self.message}"
        return self.message
