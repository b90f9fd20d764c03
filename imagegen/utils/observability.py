"""Observability configuration with Pydantic Logfire."""

import logging

from imagegen.config import settings

logger = logging.getLogger(__name__)


def setup_logfire() -> bool:
    """Configure Logfire for observability.

    Only activates if LOGFIRE_TOKEN environment variable is set.
    Call this at application startup before any upstream requests.

    Returns:
        True if Logfire instrumentation was enabled.
    """
    if not settings.logfire_token:
        return False

    try:
        import logfire

        logfire.configure(send_to_logfire="if-token-present")
        logfire.instrument_httpx(capture_all=True)
        logfire.instrument_aiohttp_client()
    except Exception as e:
        # Log but don't fail - observability is optional
        logger.warning("Failed to configure Logfire: %s", str(e))
        return False

    return True
