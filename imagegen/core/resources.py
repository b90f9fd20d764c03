# imagegen/core/resources.py
"""Ownership tracking for decoded in-memory images.

A decoded image can be referenced at the same time by a cache entry, one
or more history slots and the current-display slot. Each handle carries an
owning set; the bytes are freed exactly once, when that set becomes empty.

Example:
    >>> manager = ResourceLifecycleManager(history_size=20)
    >>> handle = manager.create(png_bytes)
    >>> manager.retain(handle, Owner.CACHE)
    >>> manager.release(handle, Owner.CACHE)  # frees the bytes
    >>> manager.release(handle, Owner.CACHE)  # no-op
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from uuid import uuid4

from imagegen.core.models import GeneratedImage
from imagegen.utils.image_handler import ImageData, decode_image

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 20


class Owner(str, Enum):
    """Structures that can hold a reference to a resource handle."""

    CACHE = "cache"
    HISTORY = "history"
    DISPLAY = "display"


class ResourceReleasedError(RuntimeError):
    """Raised when reading the bytes of a handle that was already freed."""


class ResourceHandle:
    """Opaque reference to a decoded image held in memory."""

    def __init__(self, image: ImageData, handle_id: str | None = None):
        self.id = handle_id or uuid4().hex
        self.mime_type = image.mime_type
        self.width = image.width
        self.height = image.height
        self.size_bytes = image.size_bytes
        self._image: ImageData | None = image

    @property
    def released(self) -> bool:
        return self._image is None

    @property
    def data(self) -> bytes:
        """Raw image bytes.

        Raises:
            ResourceReleasedError: If the handle has been released.
        """
        if self._image is None:
            raise ResourceReleasedError(f"Resource handle {self.id} has been released")
        return self._image.data

    def _free(self) -> None:
        self._image = None

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self.size_bytes} bytes"
        return f"ResourceHandle({self.id[:8]}, {self.mime_type}, {state})"


class ResourceLifecycleManager:
    """Creates, tracks and releases resource handles.

    Also owns the bounded history buffer and the current-display slot,
    since both are owners of the handles they reference.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self._history_size = history_size
        self._owners: dict[str, set[Owner]] = {}
        self._handles: dict[str, ResourceHandle] = {}
        self._history: deque[GeneratedImage] = deque()
        self._current: GeneratedImage | None = None
        self._freed_count = 0

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def create(self, data: bytes, mime_type: str | None = None) -> ResourceHandle:
        """Decode a payload and register a new handle with no owners.

        Args:
            data: Raw image bytes.
            mime_type: Content-Type reported by the server, if any.

        Returns:
            The registered handle.

        Raises:
            ImageDecodeError: If the payload is not a readable image.
        """
        handle = ResourceHandle(decode_image(data, mime_type))
        self._handles[handle.id] = handle
        self._owners[handle.id] = set()
        logger.debug("Created %r", handle)
        return handle

    def retain(self, handle: ResourceHandle, owner: Owner) -> None:
        """Record that owner now references handle.

        Raises:
            ResourceReleasedError: If the handle was already released.
        """
        owners = self._owners.get(handle.id)
        if handle.released or owners is None:
            raise ResourceReleasedError(
                f"Cannot retain released resource handle {handle.id}"
            )
        owners.add(owner)

    def release(self, handle: ResourceHandle, owner: Owner | None = None) -> None:
        """Drop an owner's reference and free the handle once unowned.

        Releasing an already released handle is a no-op.

        Args:
            handle: Handle to release.
            owner: Owner giving up its reference. None drops every owner
                and frees the handle immediately.
        """
        owners = self._owners.get(handle.id)
        if handle.released or owners is None:
            return

        if owner is None:
            owners.clear()
        else:
            owners.discard(owner)
            if owners:
                logger.debug(
                    "Release of %r by %s deferred; still owned by %s",
                    handle,
                    owner.value,
                    sorted(o.value for o in owners),
                )
                return

        del self._owners[handle.id]
        del self._handles[handle.id]
        handle._free()
        self._freed_count += 1
        logger.debug("Released resource handle %s", handle.id)

    def get_handle(self, handle_id: str) -> ResourceHandle | None:
        """Look up a live handle by id."""
        return self._handles.get(handle_id)

    def owners_of(self, handle: ResourceHandle) -> frozenset[Owner]:
        return frozenset(self._owners.get(handle.id, ()))

    def live_count(self) -> int:
        """Number of handles that have not been released yet."""
        return len(self._handles)

    @property
    def freed_count(self) -> int:
        return self._freed_count

    # ------------------------------------------------------------------
    # History ring buffer
    # ------------------------------------------------------------------

    @property
    def history_size(self) -> int:
        return self._history_size

    def push_history(self, image: GeneratedImage) -> GeneratedImage | None:
        """Insert a result at the head of the history buffer.

        When the buffer is full the oldest slot is evicted first. Its
        handle loses HISTORY ownership only if no other slot still
        references it.

        Args:
            image: Result to record.

        Returns:
            The evicted result, if any.

        Raises:
            ResourceReleasedError: If the image's handle was already
                released. History is left unchanged.
        """
        # Raises on a released handle before the buffer is touched
        self.retain(image.resource_handle, Owner.HISTORY)

        evicted: GeneratedImage | None = None
        if len(self._history) >= self._history_size:
            evicted = self._history.pop()
        self._history.appendleft(image)

        if evicted is not None:
            self._drop_history_reference(evicted.resource_handle)
        return evicted

    def history(self) -> list[GeneratedImage]:
        """History entries, newest first."""
        return list(self._history)

    def load_from_history(self, index: int) -> GeneratedImage:
        """Display a history entry again.

        Args:
            index: Position in history(), 0 being the newest.

        Raises:
            IndexError: If index is out of range.
        """
        if not 0 <= index < len(self._history):
            raise IndexError(f"No history entry at index {index}")
        image = self._history[index]
        self.set_current(image)
        return image

    def clear_history(self) -> None:
        entries = list(self._history)
        self._history.clear()
        for handle in {id(e.resource_handle): e.resource_handle for e in entries}.values():
            self.release(handle, Owner.HISTORY)

    def _drop_history_reference(self, handle: ResourceHandle) -> None:
        if any(e.resource_handle is handle for e in self._history):
            return
        self.release(handle, Owner.HISTORY)

    # ------------------------------------------------------------------
    # Current-display slot
    # ------------------------------------------------------------------

    @property
    def current(self) -> GeneratedImage | None:
        return self._current

    def set_current(self, image: GeneratedImage | None) -> None:
        """Replace the displayed result, releasing the previous one.

        Raises:
            ResourceReleasedError: If the new image's handle was already
                released. The current display is kept.
        """
        if image is not None:
            self.retain(image.resource_handle, Owner.DISPLAY)
        previous = self._current
        self._current = image
        if previous is not None and (
            image is None or previous.resource_handle is not image.resource_handle
        ):
            self.release(previous.resource_handle, Owner.DISPLAY)

    def present(self, image: GeneratedImage) -> None:
        """Record a fresh result in history and display it."""
        self.push_history(image)
        self.set_current(image)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Release every handle still alive."""
        self.set_current(None)
        self.clear_history()
        for handle in list(self._handles.values()):
            self.release(handle)
        logger.info("Resource manager shut down (%d handles freed)", self._freed_count)
