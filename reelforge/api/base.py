"""
Base Provider Client
====================

Shared functionality for generative provider clients: one uniform
request/result contract, lazily created HTTP client, job polling with status
normalization, and classification of every failure into a result value.

``ProviderClient.generate`` never raises for provider-side failures. Callers
decide what to do with a ``ProviderResult`` by its ``status``: ``SUCCESS``,
``RETRYABLE`` (try the next provider) or ``PERMANENT`` (the request itself is
bad; retrying elsewhere will not help).
"""

import asyncio
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple

import httpx

from ..core.exceptions import (
    ProviderError,
    PromptRejected,
    RateLimitError,
    OperationTimeoutError,
)
from ..core.security import sanitize_prompt, redact_api_key
from ..project.models import AssetKind

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================


DEFAULT_TIMEOUT = 300.0
DEFAULT_REQUEST_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_RETRY_DELAY = 2.0
DEFAULT_RETRY_MULTIPLIER = 2.0

CONTENT_POLICY_PATTERN = re.compile(r"content[ _-]?policy|nsfw|safety|moderation|not allowed", re.IGNORECASE)


# =============================================================================
# Data Classes
# =============================================================================


class JobStatus(Enum):
    """Normalized status of a remote generation job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_provider_status(cls, status: str) -> "JobStatus":
        """Normalize provider-specific status strings."""
        status_lower = str(status).lower().strip()

        if status_lower in ("completed", "succeeded", "done", "success", "finished"):
            return cls.COMPLETED
        if status_lower in ("failed", "error", "failure", "errored"):
            return cls.FAILED
        if status_lower in ("cancelled", "canceled", "aborted", "stopped"):
            return cls.CANCELLED
        if status_lower in ("pending", "queued", "in_queue", "waiting", "scheduled", "staged"):
            return cls.PENDING
        return cls.PROCESSING


class ResultStatus(Enum):
    """Outcome class of a provider call."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


@dataclass
class GenerationRequest:
    """Request parameters shared by every provider."""

    prompt: str
    asset_kind: AssetKind
    duration_seconds: Optional[float] = None
    aspect_ratio: str = "16:9"
    negative_prompt: Optional[str] = None
    model: Optional[str] = None
    # First frame for image-to-video models
    image_url: Optional[str] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.prompt = sanitize_prompt(self.prompt)
        if self.negative_prompt:
            self.negative_prompt = sanitize_prompt(self.negative_prompt)


@dataclass
class ProviderResult:
    """Result of one provider call: either an asset reference or a classified failure."""

    status: ResultStatus
    provider: str
    asset_kind: Optional[AssetKind] = None
    asset_uri: Optional[str] = None
    # Inline payload for providers that return bytes instead of a URL
    asset_bytes: Optional[bytes] = field(default=None, repr=False)
    content_type: Optional[str] = None
    duration_seconds: Optional[float] = None
    job_id: Optional[str] = None
    model: Optional[str] = None
    error_class: Optional[str] = None
    error_message: Optional[str] = None
    latency_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.status is ResultStatus.RETRYABLE

    @property
    def stops_chain(self) -> bool:
        """A rejected prompt fails everywhere; other failures are one provider's problem."""
        return self.status is ResultStatus.PERMANENT and self.error_class == "invalid_request"

    @classmethod
    def failure(
        cls,
        provider: str,
        status: ResultStatus,
        error_class: str,
        error_message: str,
        asset_kind: Optional[AssetKind] = None,
    ) -> "ProviderResult":
        return cls(
            status=status,
            provider=provider,
            asset_kind=asset_kind,
            error_class=error_class,
            error_message=redact_api_key(error_message),
        )


def classify_error(error: BaseException) -> Tuple[ResultStatus, str]:
    """Map an exception raised inside a provider call to a result status and error class."""
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, OperationTimeoutError)):
        return ResultStatus.RETRYABLE, "timeout"
    if isinstance(error, RateLimitError):
        return ResultStatus.RETRYABLE, "rate_limit"
    if isinstance(error, PromptRejected):
        return ResultStatus.PERMANENT, "invalid_request"
    if isinstance(error, ProviderError):
        if error.status_code in (401, 403):
            return ResultStatus.PERMANENT, "auth"
        if error.code in ("generation_failed", "unsupported_request"):
            return ResultStatus.RETRYABLE, error.code
        if error.recoverable:
            return ResultStatus.RETRYABLE, "provider_unavailable"
        return ResultStatus.PERMANENT, "provider_error"
    if isinstance(error, httpx.HTTPError):
        return ResultStatus.RETRYABLE, "provider_unavailable"
    if isinstance(error, (KeyError, ValueError, TypeError, IndexError)):
        return ResultStatus.RETRYABLE, "malformed_response"
    return ResultStatus.RETRYABLE, "unexpected_error"


# =============================================================================
# Base Provider Class
# =============================================================================


class ProviderClient(ABC):
    """
    Abstract base class for generative provider clients.

    Subclasses supply submission, status polling and output parsing. The base
    class owns the HTTP client, the overall timeout, optional same-provider
    retries with exponential backoff, and failure classification.
    """

    SUPPORTED_KINDS: Tuple[AssetKind, ...] = ()
    DEFAULT_MODELS: Dict[str, str] = {}

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_retries: int = 0,
        models: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the provider.

        Args:
            api_key: API key (or read from environment)
            base_url: Base URL for the API
            timeout: Overall budget for one generate() call, polling included
            request_timeout: Timeout for a single HTTP request
            poll_interval: Seconds between job status checks
            max_retries: Same-provider retries for retryable failures
            models: Model overrides keyed by asset kind value
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key or self._get_api_key_from_env()
        self.base_url = (base_url or self._get_default_base_url()).rstrip("/")
        self.timeout = timeout
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self.max_retries = max_retries
        self.models = {**self.DEFAULT_MODELS, **(models or {})}
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

        self._validate_config()

    # -------------------------------------------------------------------------
    # Abstract Methods (must be implemented by subclasses)
    # -------------------------------------------------------------------------

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Registry id of the provider."""

    @property
    def supported_kinds(self) -> List[AssetKind]:
        """Asset kinds this provider can generate."""
        return list(self.SUPPORTED_KINDS)

    @property
    @abstractmethod
    def env_key_name(self) -> str:
        """Environment variable holding the API key."""

    @abstractmethod
    def _get_default_base_url(self) -> str:
        """Default base URL for this provider."""

    @abstractmethod
    async def _submit(self, request: GenerationRequest) -> Dict[str, Any]:
        """Send the generation request; returns either a final payload or a job handle."""

    @abstractmethod
    def _parse_output(self, data: Dict[str, Any], request: GenerationRequest) -> ProviderResult:
        """Turn a completed payload into a successful ProviderResult."""

    async def _check_job_status(self, job_id: str, request: GenerationRequest) -> Dict[str, Any]:
        """Fetch job status; only needed by providers with asynchronous jobs."""
        raise NotImplementedError(f"{self.provider_name} does not poll jobs")

    # -------------------------------------------------------------------------
    # Shared Implementation Methods
    # -------------------------------------------------------------------------

    def supports(self, kind: AssetKind) -> bool:
        return kind in self.supported_kinds

    async def generate(self, request: GenerationRequest) -> ProviderResult:
        """
        Run one generation and classify the outcome.

        Returns:
            ProviderResult; never raises for provider-side failures
        """
        if not self.supports(request.asset_kind):
            return ProviderResult.failure(
                self.provider_name,
                ResultStatus.PERMANENT,
                "unsupported_kind",
                f"{self.provider_name} cannot generate {request.asset_kind.value}",
                request.asset_kind,
            )
        if not self.api_key:
            return ProviderResult.failure(
                self.provider_name,
                ResultStatus.PERMANENT,
                "auth",
                f"Missing API key; set {self.env_key_name}",
                request.asset_kind,
            )

        started = time.monotonic()
        result = await self._generate_with_retry(request)
        result.latency_seconds = time.monotonic() - started
        result.asset_kind = request.asset_kind
        return result

    async def _generate_with_retry(self, request: GenerationRequest) -> ProviderResult:
        result = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = DEFAULT_RETRY_DELAY * (DEFAULT_RETRY_MULTIPLIER ** (attempt - 1))
                logger.info(f"{self.provider_name}: retry {attempt}/{self.max_retries} after {delay:.1f}s")
                await asyncio.sleep(delay)

            result = await self._generate_once(request)
            if result.status is not ResultStatus.RETRYABLE:
                return result
        return result

    async def _generate_once(self, request: GenerationRequest) -> ProviderResult:
        logger.info(f"Generating {request.asset_kind.value} with {self.provider_name}")
        try:
            return await asyncio.wait_for(self._run(request), timeout=self.timeout)
        except Exception as e:
            status, error_class = classify_error(e)
            message = str(e) or e.__class__.__name__
            if isinstance(e, asyncio.TimeoutError):
                message = f"{self.provider_name} did not finish within {self.timeout}s"
            logger.warning(f"{self.provider_name} {error_class}: {redact_api_key(message)}")
            return ProviderResult.failure(self.provider_name, status, error_class, message, request.asset_kind)

    async def _run(self, request: GenerationRequest) -> ProviderResult:
        data = await self._submit(request)
        job_id = None
        if self._is_async_response(data):
            job_id = self._extract_job_id(data)
            data = await self.wait_for_completion(job_id, request)
        result = self._parse_output(data, request)
        result.job_id = result.job_id or job_id
        if not result.asset_uri and result.asset_bytes is None:
            raise ValueError(f"{self.provider_name} returned no asset")
        return result

    async def wait_for_completion(self, job_id: str, request: GenerationRequest) -> Dict[str, Any]:
        """
        Poll a job until it completes.

        The overall deadline is enforced by generate(); this loop only
        stops on a terminal status.
        """
        while True:
            data = await self._check_job_status(job_id, request)
            status = JobStatus.from_provider_status(self._extract_status(data))

            if status is JobStatus.COMPLETED:
                return data
            if status in (JobStatus.FAILED, JobStatus.CANCELLED):
                error = self._extract_error(data)
                if CONTENT_POLICY_PATTERN.search(error):
                    raise PromptRejected(f"Job {job_id} rejected: {error}", provider=self.provider_name)
                raise ProviderError(
                    f"Job {job_id} {status.value}: {error}",
                    provider=self.provider_name,
                    code="generation_failed",
                    recoverable=True,
                )

            logger.debug(f"{self.provider_name} job {job_id} status: {status.value}, waiting...")
            await asyncio.sleep(self.poll_interval)

    # -------------------------------------------------------------------------
    # HTTP Helpers
    # -------------------------------------------------------------------------

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.request_timeout),
                    headers=self._get_headers(),
                    transport=self._transport,
                )
            return self._client

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        response = await client.request(method, url, **kwargs)
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Translate HTTP error statuses into the exception hierarchy."""
        code = response.status_code
        if code < 400:
            return

        body = response.text
        if code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                f"{self.provider_name} rate limited",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                provider=self.provider_name,
            )
        if code in (400, 422):
            raise PromptRejected(
                f"{self.provider_name} rejected request: {body[:200]}",
                provider=self.provider_name,
                status_code=code,
                response_body=body,
            )
        raise ProviderError(
            f"{self.provider_name} API error {code}",
            provider=self.provider_name,
            status_code=code,
            response_body=body,
        )

    # -------------------------------------------------------------------------
    # Response Helpers
    # -------------------------------------------------------------------------

    def _get_api_key_from_env(self) -> Optional[str]:
        return os.getenv(self.env_key_name)

    def _validate_config(self) -> None:
        if not self.api_key:
            logger.warning(
                f"No API key found for {self.provider_name}. "
                f"Set {self.env_key_name} environment variable or pass api_key parameter."
            )

    def _is_async_response(self, data: Dict[str, Any]) -> bool:
        return False

    def _extract_job_id(self, data: Dict[str, Any]) -> str:
        job_id = data.get("request_id") or data.get("task_id") or data.get("job_id") or data.get("id")
        if not job_id:
            raise ValueError(f"{self.provider_name} response has no job id")
        return str(job_id)

    def _extract_status(self, data: Dict[str, Any]) -> str:
        return data.get("status") or data.get("state") or "unknown"

    def _extract_error(self, data: Dict[str, Any]) -> str:
        error = data.get("error") or data.get("failure") or data.get("error_message") or data.get("message")
        if isinstance(error, dict):
            error = error.get("message") or str(error)
        return str(error or "Unknown error")

    def _success(self, request: GenerationRequest, **kwargs) -> ProviderResult:
        return ProviderResult(
            status=ResultStatus.SUCCESS,
            provider=self.provider_name,
            asset_kind=request.asset_kind,
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Context Manager Protocol
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP client."""
        async with self._client_lock:
            if self._client:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
