# imagegen/utils/image_client.py
"""HTTP client for the image generation service.

Builds generation URLs and downloads the binary payload over a shared
aiohttp session.
"""

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import quote, urlencode

import aiohttp

from imagegen.core.errors import TransportError
from imagegen.core.models import RequestParams

logger = logging.getLogger(__name__)

# Timeout settings
AIOHTTP_TOTAL_TIMEOUT = 10
AIOHTTP_CONNECT_TIMEOUT = 5


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass
class ImagePayload:
    """Raw response of a successful generation request."""

    data: bytes
    content_type: str | None = None


class ImageServiceClient:
    """Downloads generated images.

    Args:
        base_url: Image API base URL.
        timeout: Total time allowed for one download, in seconds.
        user_agent: User-Agent header sent upstream.
    """

    def __init__(
        self,
        base_url: str = "https://image.pollinations.ai",
        timeout: float = AIOHTTP_TOTAL_TIMEOUT,
        user_agent: str = "Pollinations-Image-Generator/1.0.0",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent
        self._session: aiohttp.ClientSession | None = None
        self._session_loop: asyncio.AbstractEventLoop | None = None

    def build_url(self, prompt: str, request: RequestParams) -> str:
        """Build the generation URL for a final prompt.

        Args:
            prompt: Final (composed, possibly enhanced) prompt.
            request: Request supplying model, size and flags.

        Returns:
            ``{base}/prompt/{encoded prompt}?model=...&width=...``
        """
        params: dict[str, str] = {
            "model": request.model_id,
            "width": str(request.width),
            "height": str(request.height),
            "nologo": _flag(request.no_logo),
            "private": _flag(request.private),
            "safe": _flag(request.safe_mode),
        }
        if request.seed is not None:
            params["seed"] = str(request.seed)
        if request.referrer:
            params["referrer"] = request.referrer

        encoded_prompt = quote(prompt.strip(), safe="")
        return f"{self._base_url}/prompt/{encoded_prompt}?{urlencode(params)}"

    async def _get_session(self) -> aiohttp.ClientSession:
        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        needs_recreate = (
            self._session is None
            or self._session.closed
            or self._session_loop is not current_loop
        )

        if needs_recreate:
            # Close old session if it exists and belongs to a different event loop
            if (
                self._session is not None
                and not self._session.closed
                and self._session_loop is not current_loop
            ):
                try:
                    await self._session.close()
                except Exception as e:
                    logger.debug("Error closing old session: %s", e)

            timeout = aiohttp.ClientTimeout(
                total=self._timeout,
                connect=min(AIOHTTP_CONNECT_TIMEOUT, self._timeout),
            )
            connector = aiohttp.TCPConnector(
                limit=50,
                limit_per_host=20,
                ttl_dns_cache=300,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={"User-Agent": self._user_agent},
            )
            self._session_loop = current_loop
            logger.debug("Created new aiohttp session")

        assert self._session is not None
        return self._session

    async def fetch(self, url: str) -> ImagePayload:
        """Download a generated image.

        Raises:
            TransportError: On non-2xx status, timeout or connection failure.
        """
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if not 200 <= response.status < 300:
                    if response.status == 429:
                        logger.warning("Rate limited by image API")
                    raise TransportError(
                        response.reason or "Image request failed",
                        status=response.status,
                    )
                data = await response.read()
                return ImagePayload(data=data, content_type=response.content_type)
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Image request timed out after {self._timeout:g}s"
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Image request failed: {e}") from e

    async def aclose(self) -> None:
        """Close the shared aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session")
        self._session = None
