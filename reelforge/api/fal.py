"""
fal.ai Provider
===============

Queue-based access to fal.ai models:
- FLUX for scene stills
- Kling for text/image-to-video clips
- Stable Audio for sound effects

Requests are submitted to the queue and polled through the status and
response URLs returned at submission.
"""

import logging
from typing import Dict, Any, Tuple

from ..project.models import AssetKind
from .base import ProviderClient, GenerationRequest, ProviderResult
from .factory import register_provider

logger = logging.getLogger(__name__)


@register_provider("fal")
class FalProvider(ProviderClient):
    """fal.ai queue client for images, video clips and sound effects."""

    SUPPORTED_KINDS = (AssetKind.IMAGE, AssetKind.VIDEO, AssetKind.SOUND_EFFECT)

    DEFAULT_MODELS = {
        "image": "fal-ai/flux/dev",
        "video": "fal-ai/kling-video/v2.5-turbo/pro/text-to-video",
        "video_i2v": "fal-ai/kling-video/v2.5-turbo/pro/image-to-video",
        "sound_effect": "fal-ai/stable-audio",
    }

    IMAGE_SIZES = {
        "16:9": "landscape_16_9",
        "9:16": "portrait_16_9",
        "4:3": "landscape_4_3",
        "1:1": "square_hd",
        "21:9": "landscape_16_9",
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # request_id -> (status_url, response_url)
        self._jobs: Dict[str, Tuple[str, str]] = {}

    @property
    def provider_name(self) -> str:
        return "fal"

    @property
    def env_key_name(self) -> str:
        return "FAL_KEY"

    def _get_default_base_url(self) -> str:
        return "https://queue.fal.run"

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    def _endpoint(self, request: GenerationRequest) -> str:
        if request.model:
            return request.model
        if request.asset_kind is AssetKind.VIDEO and request.image_url:
            return self.models["video_i2v"]
        return self.models[request.asset_kind.value]

    def _build_payload(self, request: GenerationRequest) -> Dict[str, Any]:
        """Build the model input for the request's asset kind."""
        payload: Dict[str, Any] = {"prompt": request.prompt}

        if request.asset_kind is AssetKind.IMAGE:
            payload["image_size"] = self.IMAGE_SIZES.get(request.aspect_ratio, "landscape_16_9")
            payload["num_images"] = 1
        elif request.asset_kind is AssetKind.VIDEO:
            # Kling only renders 5 or 10 second clips
            payload["duration"] = "10" if (request.duration_seconds or 5) > 5 else "5"
            payload["aspect_ratio"] = request.aspect_ratio
            if request.image_url:
                payload["image_url"] = request.image_url
        elif request.asset_kind is AssetKind.SOUND_EFFECT:
            payload["seconds_total"] = int(min(max(request.duration_seconds or 5, 1), 47))

        if request.negative_prompt:
            payload["negative_prompt"] = request.negative_prompt

        payload.update(request.extra_params)
        return payload

    async def _submit(self, request: GenerationRequest) -> Dict[str, Any]:
        endpoint = self._endpoint(request)
        logger.debug(f"Submitting to fal endpoint {endpoint}")
        response = await self._request("POST", f"{self.base_url}/{endpoint}", json=self._build_payload(request))
        data = response.json()

        request_id = data.get("request_id")
        if request_id:
            self._jobs[request_id] = (
                data.get("status_url") or f"{self.base_url}/{endpoint}/requests/{request_id}/status",
                data.get("response_url") or f"{self.base_url}/{endpoint}/requests/{request_id}",
            )
        return data

    def _is_async_response(self, data: Dict[str, Any]) -> bool:
        return "request_id" in data

    async def _check_job_status(self, job_id: str, request: GenerationRequest) -> Dict[str, Any]:
        status_url, response_url = self._jobs[job_id]
        response = await self._request("GET", status_url)
        data = response.json()

        if str(data.get("status", "")).upper() == "COMPLETED":
            result = await self._request("GET", response_url)
            self._jobs.pop(job_id, None)
            output = result.json()
            if output.get("error") or output.get("detail"):
                return {"status": "failed", "error": output.get("error") or output.get("detail")}
            return {**output, "status": "completed"}
        return data

    def _parse_output(self, data: Dict[str, Any], request: GenerationRequest) -> ProviderResult:
        if request.asset_kind is AssetKind.IMAGE:
            image = data["images"][0]
            return self._success(
                request,
                asset_uri=image["url"],
                content_type=image.get("content_type", "image/jpeg"),
                model=self._endpoint(request),
            )

        if request.asset_kind is AssetKind.VIDEO:
            video = data["video"]
            return self._success(
                request,
                asset_uri=video["url"] if isinstance(video, dict) else video,
                content_type="video/mp4",
                duration_seconds=float(self._build_payload(request)["duration"]),
                model=self._endpoint(request),
            )

        audio = data["audio_file"]
        return self._success(
            request,
            asset_uri=audio["url"],
            content_type=audio.get("content_type", "audio/wav"),
            duration_seconds=request.duration_seconds,
            model=self._endpoint(request),
        )
