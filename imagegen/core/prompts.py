# imagegen/core/prompts.py
"""Prompt composition and optional remote enhancement."""

import json
import logging
from urllib.parse import quote

import httpx

from imagegen.core.models import STYLE_SUFFIXES, RequestParams

logger = logging.getLogger(__name__)

ENHANCEMENT_TIMEOUT = 15.0
ENHANCEMENT_MODEL = "openai"
LONG_PROMPT_WARNING = 500

ENHANCEMENT_TEMPLATE = (
    'Enhance this image prompt to be more detailed and visually descriptive: "{prompt}". '
    "Return only the enhanced prompt without quotes."
)


def compose_prompt(request: RequestParams) -> str:
    """Build the prompt sent upstream.

    Base prompt, then the negative prompt (if any) after a comma, then the
    fixed suffix of the requested style.
    """
    prompt = request.prompt_text.strip()
    negative = (request.negative_prompt_text or "").strip()
    if negative:
        prompt += f", {negative}"
    return prompt + STYLE_SUFFIXES[request.style_tag]


class PromptEnhancer:
    """Rewrites prompts through the text generation service.

    Enhancement is best effort: every failure returns the original prompt.

    Args:
        base_url: Text API base URL.
        client: Shared httpx client. One is created on demand if omitted.
        timeout: Bound on the enhancement call, in seconds.
    """

    def __init__(
        self,
        base_url: str = "https://text.pollinations.ai",
        client: httpx.AsyncClient | None = None,
        timeout: float = ENHANCEMENT_TIMEOUT,
        user_agent: str = "Pollinations-Image-Generator/1.0.0",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._user_agent = user_agent

    def build_url(self, prompt: str) -> str:
        instruction = ENHANCEMENT_TEMPLATE.format(prompt=prompt)
        return (
            f"{self._base_url}/{quote(instruction, safe='')}"
            f"?model={ENHANCEMENT_MODEL}&json=true"
        )

    async def enhance(self, prompt: str) -> str:
        """Return an enhanced prompt, or prompt itself on any failure."""
        if not prompt or not prompt.strip():
            return prompt

        if len(prompt) > LONG_PROMPT_WARNING:
            logger.warning("Prompt is quite long, enhancement may be less effective")

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)

        try:
            response = await self._client.get(
                self.build_url(prompt),
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
            # The service sometimes wraps the JSON object in a JSON string
            if isinstance(data, str):
                data = json.loads(data)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to enhance prompt, using original: %s", e)
            return prompt

        enhanced = data.get("response") if isinstance(data, dict) else None
        if isinstance(enhanced, str) and enhanced.strip():
            logger.info("Prompt enhanced successfully")
            return enhanced.strip()

        logger.warning("Prompt enhancement returned invalid response, using original")
        return prompt

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
