"""
PiAPI Provider
==============

Unified task API in front of several third-party models. Used here for Kling
video clips and instrumental background music.
"""

import logging
from typing import Dict, Any

from ..core.exceptions import ProviderError
from ..project.models import AssetKind
from .base import ProviderClient, GenerationRequest, ProviderResult
from .factory import register_provider

logger = logging.getLogger(__name__)


@register_provider("piapi")
class PiAPIProvider(ProviderClient):
    """PiAPI task client for video clips and music beds."""

    SUPPORTED_KINDS = (AssetKind.VIDEO, AssetKind.MUSIC)

    DEFAULT_MODELS = {
        "video": "kling",
        "music": "music-u",
    }

    TASK_TYPES = {
        AssetKind.VIDEO: "video_generation",
        AssetKind.MUSIC: "generate_music",
    }

    @property
    def provider_name(self) -> str:
        return "piapi"

    @property
    def env_key_name(self) -> str:
        return "PIAPI_API_KEY"

    def _get_default_base_url(self) -> str:
        return "https://api.piapi.ai"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "Content-Type": "application/json",
        }

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        """Build the task body for the request's asset kind."""
        if request.asset_kind is AssetKind.VIDEO:
            task_input: Dict[str, Any] = {
                "prompt": request.prompt,
                "duration": 10 if (request.duration_seconds or 5) > 5 else 5,
                "aspect_ratio": request.aspect_ratio,
                "mode": "std",
            }
            if request.image_url:
                task_input["image_url"] = request.image_url
            if request.negative_prompt:
                task_input["negative_prompt"] = request.negative_prompt
        else:
            task_input = {
                "gpt_description_prompt": request.prompt,
                "lyrics_type": "instrumental",
            }
        task_input.update(request.extra_params)

        return {
            "model": request.model or self.models[request.asset_kind.value],
            "task_type": self.TASK_TYPES[request.asset_kind],
            "input": task_input,
        }

    def _unwrap(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if body.get("code") not in (200, 0, None):
            raise ProviderError(
                f"PiAPI error {body.get('code')}: {body.get('message', 'unknown error')}",
                provider=self.provider_name,
                recoverable=True,
            )
        return body["data"]

    async def _submit(self, request: GenerationRequest) -> Dict[str, Any]:
        response = await self._request("POST", f"{self.base_url}/api/v1/task", json=self._build_payload(request))
        return self._unwrap(response.json())

    def _is_async_response(self, data: Dict[str, Any]) -> bool:
        return "task_id" in data

    async def _check_job_status(self, job_id: str, request: GenerationRequest) -> Dict[str, Any]:
        response = await self._request("GET", f"{self.base_url}/api/v1/task/{job_id}")
        return self._unwrap(response.json())

    def _extract_error(self, data: Dict[str, Any]) -> str:
        error = data.get("error") or {}
        if isinstance(error, dict):
            return error.get("message") or error.get("raw_message") or "Task failed"
        return str(error)

    def _parse_output(self, data: Dict[str, Any], request: GenerationRequest) -> ProviderResult:
        output = data["output"]

        if request.asset_kind is AssetKind.VIDEO:
            url = output.get("video_url")
            if not url and output.get("works"):
                url = output["works"][0]["video"]["resource"]
            return self._success(
                request,
                asset_uri=url,
                content_type="video/mp4",
                duration_seconds=float(self._build_payload(request)["input"]["duration"]),
                model=self._build_payload(request)["model"],
            )

        song = output["songs"][0]
        return self._success(
            request,
            asset_uri=song["song_path"],
            content_type="audio/mpeg",
            duration_seconds=song.get("duration"),
            model=self._build_payload(request)["model"],
        )
