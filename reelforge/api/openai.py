"""
OpenAI Provider
===============

Narration voice-over through the speech endpoint and stills through the image
endpoint. Both answer synchronously with the payload inline, so results carry
``asset_bytes`` for the orchestrator to upload.
"""

import base64
import logging
from typing import Dict, Any

from ..project.models import AssetKind
from .base import ProviderClient, GenerationRequest, ProviderResult
from .factory import register_provider

logger = logging.getLogger(__name__)


@register_provider("openai")
class OpenAIProvider(ProviderClient):
    """OpenAI client for voice-over and stills."""

    SUPPORTED_KINDS = (AssetKind.VOICE, AssetKind.IMAGE)

    DEFAULT_MODELS = {
        "voice": "gpt-4o-mini-tts",
        "image": "gpt-image-1",
    }

    IMAGE_SIZES = {
        "16:9": "1536x1024",
        "21:9": "1536x1024",
        "4:3": "1536x1024",
        "9:16": "1024x1536",
        "1:1": "1024x1024",
    }

    DEFAULT_VOICE = "alloy"

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def env_key_name(self) -> str:
        return "OPENAI_API_KEY"

    def _get_default_base_url(self) -> str:
        return "https://api.openai.com/v1"

    async def _submit(self, request: GenerationRequest) -> Dict[str, Any]:
        model = request.model or self.models[request.asset_kind.value]

        if request.asset_kind is AssetKind.VOICE:
            payload = {
                "model": model,
                "input": request.prompt,
                "voice": request.extra_params.get("voice", self.DEFAULT_VOICE),
                "response_format": "mp3",
            }
            if request.extra_params.get("instructions"):
                payload["instructions"] = request.extra_params["instructions"]
            response = await self._request("POST", f"{self.base_url}/audio/speech", json=payload)
            return {"audio": response.content, "model": model}

        payload = {
            "model": model,
            "prompt": request.prompt,
            "size": self.IMAGE_SIZES.get(request.aspect_ratio, "1536x1024"),
            "n": 1,
        }
        response = await self._request("POST", f"{self.base_url}/images/generations", json=payload)
        return {**response.json(), "model": model}

    def _parse_output(self, data: Dict[str, Any], request: GenerationRequest) -> ProviderResult:
        if request.asset_kind is AssetKind.VOICE:
            audio = data["audio"]
            if not audio:
                raise ValueError("Empty speech response")
            return self._success(
                request,
                asset_bytes=audio,
                content_type="audio/mpeg",
                model=data["model"],
            )

        image = data["data"][0]
        if image.get("b64_json"):
            return self._success(
                request,
                asset_bytes=base64.b64decode(image["b64_json"]),
                content_type="image/png",
                model=data["model"],
            )
        return self._success(
            request,
            asset_uri=image["url"],
            content_type="image/png",
            model=data["model"],
        )
