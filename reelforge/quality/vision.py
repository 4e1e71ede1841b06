"""
Vision Client
=============

Thin wrapper over a vision-capable model. The analyzer sends one or more
images plus a text prompt and gets the model's text reply back.
"""

import asyncio
import base64
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional, List, Tuple

from anthropic import AsyncAnthropic, APIError, APIConnectionError, RateLimitError

from ..core.exceptions import AnalysisFailure, ConfigurationError
from ..core.security import redact_api_key

logger = logging.getLogger(__name__)

# (image bytes, media type) pairs
ImageInput = List[Tuple[bytes, str]]


class VisionClient(ABC):
    """Sends images and a prompt to a vision model."""

    model: str = "unknown"

    @abstractmethod
    async def describe(self, images: ImageInput, prompt: str) -> str:
        """Return the model's text reply; raises AnalysisFailure on error."""

    async def close(self) -> None:
        """Release client resources."""


class AnthropicVisionClient(VisionClient):
    """Anthropic Messages API client with retry on rate limits and connection errors."""

    ENV_KEY = "ANTHROPIC_API_KEY"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 1500,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        client: Optional[AsyncAnthropic] = None,
    ):
        """
        Args:
            api_key: Anthropic API key. Defaults to ANTHROPIC_API_KEY env var.
            model: Vision-capable model id
            max_tokens: Maximum tokens in the reply
            max_retries: Attempts for rate-limited or dropped requests
            retry_delay: Base delay between retries in seconds (exponential backoff)
            client: Pre-built client (tests)
        """
        self._api_key = api_key or os.getenv(self.ENV_KEY)
        if client is None and not self._api_key:
            raise ConfigurationError(
                f"Anthropic API key not provided. Set {self.ENV_KEY}.",
                config_key=self.ENV_KEY,
            )

        self._client = client or AsyncAnthropic(api_key=self._api_key)
        self.model = model
        self.max_tokens = max_tokens
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay

    async def describe(self, images: ImageInput, prompt: str) -> str:
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": base64.b64encode(data).decode("ascii"),
                },
            }
            for data, media_type in images
        ]
        content.append({"type": "text", "text": prompt})
        messages = [{"role": "user", "content": content}]

        for attempt in range(self._max_retries):
            try:
                logger.debug(
                    f"Sending {len(images)} image(s) to {self.model} "
                    f"(attempt {attempt + 1}/{self._max_retries})"
                )
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    messages=messages,
                )
                for block in response.content:
                    if getattr(block, "type", None) == "text":
                        return block.text
                raise AnalysisFailure("Vision model returned no text content")

            except (RateLimitError, APIConnectionError) as e:
                if attempt == self._max_retries - 1:
                    raise AnalysisFailure(f"Vision request failed: {redact_api_key(str(e))}")
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(f"{type(e).__name__} from vision model. Retrying in {delay:.1f}s...")
                await asyncio.sleep(delay)

            except APIError as e:
                logger.error(f"Vision API error: {redact_api_key(str(e))}")
                raise AnalysisFailure(f"Vision request failed: {redact_api_key(str(e))}")

        raise AnalysisFailure("Max retries exceeded")

    async def close(self) -> None:
        await self._client.close()
