"""
Remote Render Function
======================

Client for the serverless function that renders one frame range of a
composition and writes the result to the object store.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any

import httpx

from ..core.exceptions import ChunkRenderFailure, ConfigurationError
from ..core.security import redact_api_key

logger = logging.getLogger(__name__)


class RenderFunction(ABC):
    """Renders ``[start_frame, end_frame)`` of a composition and returns the output URI."""

    @abstractmethod
    async def render(
        self,
        composition_id: str,
        input_props: Dict[str, Any],
        start_frame: int,
        end_frame: int,
    ) -> str:
        """Render a frame range; raises on failure."""

    async def close(self) -> None:
        """Release client resources."""


class HttpRenderFunction(RenderFunction):
    """
    Render function reached over HTTP.

    Submits ``POST {function_url}/renders`` and polls
    ``GET {function_url}/renders/{render_id}`` until the progress payload
    reports ``done`` or a fatal error. The remote side takes an inclusive
    ``frameRange``, so the exclusive end frame is converted on the way out.
    """

    ENV_TOKEN = "RENDER_FUNCTION_TOKEN"

    def __init__(
        self,
        function_url: Optional[str] = None,
        api_key: Optional[str] = None,
        poll_interval: float = 5.0,
        request_timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.function_url = (function_url or os.getenv("RENDER_FUNCTION_URL") or "").rstrip("/")
        if not self.function_url:
            raise ConfigurationError(
                "No render function URL configured",
                config_key="render.function_url",
            )
        self.api_key = api_key or os.getenv(self.ENV_TOKEN)
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                headers = {"Content-Type": "application/json"}
                if self.api_key:
                    headers["Authorization"] = f"Bearer {self.api_key}"
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.request_timeout),
                    headers=headers,
                    transport=self._transport,
                )
            return self._client

    async def render(
        self,
        composition_id: str,
        input_props: Dict[str, Any],
        start_frame: int,
        end_frame: int,
    ) -> str:
        client = await self._get_client()
        chunk_index = input_props.get("chunkIndex")

        response = await client.post(
            f"{self.function_url}/renders",
            json={
                "compositionId": composition_id,
                "inputProps": input_props,
                "frameRange": [start_frame, end_frame - 1],
                "codec": "h264",
            },
        )
        response.raise_for_status()
        render_id = response.json()["renderId"]
        logger.info(f"Chunk {chunk_index}: render {render_id} started for frames {start_frame}-{end_frame}")

        while True:
            await asyncio.sleep(self.poll_interval)
            progress = await client.get(f"{self.function_url}/renders/{render_id}")
            progress.raise_for_status()
            data = progress.json()

            if data.get("fatalErrorEncountered") or (data.get("errors") and not data.get("done")):
                errors = data.get("errors") or []
                message = errors[0].get("message") if errors and isinstance(errors[0], dict) else str(errors[:1])
                raise ChunkRenderFailure(
                    f"Render {render_id} failed: {redact_api_key(message or 'unknown error')}",
                    chunk_index=chunk_index,
                    render_id=render_id,
                )

            if data.get("done"):
                output = data.get("outputFile")
                if not output:
                    raise ChunkRenderFailure(
                        f"Render {render_id} finished without an output file",
                        chunk_index=chunk_index,
                        render_id=render_id,
                    )
                return output

            logger.debug(f"Render {render_id}: {float(data.get('overallProgress', 0)) * 100:.0f}%")

    async def close(self) -> None:
        async with self._client_lock:
            if self._client:
                await self._client.aclose()
                self._client = None
