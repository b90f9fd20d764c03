"""Lifecycle management for long-lived service components.

Provides a manager for startup and shutdown of the components an
ImageStudio owns (HTTP clients, the resource manager).

Example:
    >>> lm = LifecycleManager()
    >>> lm.register("image_client", image_client)
    >>> await lm.startup()
    >>> # ... application runs ...
    >>> await lm.shutdown()
"""

import inspect
import logging
from typing import Any

logger = logging.getLogger(__name__)


async def _call(method: Any) -> None:
    result = method()
    if inspect.isawaitable(result):
        await result


class LifecycleManager:
    """Starts and stops registered components in order."""

    def __init__(self) -> None:
        self._components: list[tuple[str, Any]] = []
        self._started = False

    def register(self, name: str, component: Any) -> None:
        """Register a component.

        Components may implement start()/startup() and aclose()/shutdown(),
        either sync or async.
        """
        self._components.append((name, component))
        logger.debug("Registered lifecycle component: %s", name)

    async def startup(self) -> None:
        """Start all registered components in order.

        Skips if already started.
        """
        if self._started:
            logger.debug("Lifecycle manager already started")
            return

        for name, component in self._components:
            if hasattr(component, "start"):
                logger.info("Starting %s", name)
                await _call(component.start)
            elif hasattr(component, "startup"):
                logger.info("Starting %s", name)
                await _call(component.startup)

        self._started = True
        logger.info(
            "All lifecycle components started (%d total)", len(self._components)
        )

    async def shutdown(self) -> None:
        """Shutdown all registered components in reverse order.

        A failing component is logged and does not stop the others.
        """
        if not self._started:
            logger.debug("Lifecycle manager not started, skipping shutdown")
            return

        for name, component in reversed(self._components):
            logger.info("Stopping %s", name)
            try:
                if hasattr(component, "aclose"):
                    await _call(component.aclose)
                elif hasattr(component, "shutdown"):
                    await _call(component.shutdown)
            except Exception as e:
                logger.error("Error shutting down %s: %s", name, e)

        self._started = False
        logger.info("All lifecycle components stopped")

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def component_count(self) -> int:
        return len(self._components)
