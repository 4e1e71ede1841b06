"""
Custom Exceptions
=================

Unified exception hierarchy for consistent error handling across the pipeline.

Failures are attributed to the smallest unit that can absorb them (a provider
attempt, an asset, a scene, a chunk) and only escalate to the job when no
smaller remedy exists.
"""

from typing import Optional, Dict, Any, List


class ReelforgeError(Exception):
    """Base exception for all Reelforge errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ConfigurationError(ReelforgeError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        super().__init__(message, details=details, **kwargs)


class ValidationError(ReelforgeError):
    """Input/state validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]
        if constraint:
            details["constraint"] = constraint
        super().__init__(message, details=details, **kwargs)


class SecurityError(ReelforgeError):
    """Path traversal and similar attempts to escape a storage root."""

    def __init__(
        self,
        message: str,
        attempted_path: Optional[str] = None,
        security_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if attempted_path:
            details["attempted_path"] = "***REDACTED***"
        if security_type:
            details["security_type"] = security_type
        super().__init__(message, recoverable=False, details=details, **kwargs)


class ProviderError(ReelforgeError):
    """Provider/API-related errors."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if provider:
            details["provider"] = provider
        if status_code:
            details["status_code"] = status_code
        if response_body:
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        recoverable = kwargs.pop(
            "recoverable",
            status_code in (408, 429, 500, 502, 503, 504) if status_code else False,
        )
        super().__init__(message, recoverable=recoverable, details=details, **kwargs)
        self.provider = provider
        self.status_code = status_code


class RateLimitError(ProviderError):
    """Rate limit exceeded errors."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(message, status_code=429, recoverable=True, details=details, **kwargs)


class PromptRejected(ProviderError):
    """The provider refused the request itself (bad prompt, policy violation)."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class OperationTimeoutError(ReelforgeError):
    """Operation timeout errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, recoverable=True, details=details, **kwargs)


class ProviderExhausted(ReelforgeError):
    """Every provider in a scene's fallback chain failed for one asset kind."""

    def __init__(
        self,
        message: str,
        scene_id: Optional[str] = None,
        asset_kind: Optional[str] = None,
        providers: Optional[List[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if scene_id:
            details["scene_id"] = scene_id
        if asset_kind:
            details["asset_kind"] = asset_kind
        if providers is not None:
            details["providers"] = list(providers)
        super().__init__(message, recoverable=False, details=details, **kwargs)


class StorageError(ReelforgeError):
    """Object store failures (upload, download, missing object)."""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        backend: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        if backend:
            details["backend"] = backend
        super().__init__(message, details=details, **kwargs)


class CacheFailure(ReelforgeError):
    """An asset could not be copied into fast storage."""

    def __init__(
        self,
        message: str,
        uri: Optional[str] = None,
        asset_kind: Optional[str] = None,
        attempts: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if uri:
            details["uri"] = uri[:200]
        if asset_kind:
            details["asset_kind"] = asset_kind
        if attempts:
            details["attempts"] = attempts
        super().__init__(message, recoverable=True, details=details, **kwargs)


class ChunkRenderFailure(ReelforgeError):
    """A single chunk render attempt failed."""

    def __init__(
        self,
        message: str,
        chunk_index: Optional[int] = None,
        render_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if chunk_index is not None:
            details["chunk_index"] = chunk_index
        if render_id:
            details["render_id"] = render_id
        super().__init__(message, recoverable=True, details=details, **kwargs)


class RenderFailed(ReelforgeError):
    """One or more chunks never rendered successfully."""

    def __init__(
        self,
        message: str,
        failed_chunk_indices: Optional[List[int]] = None,
        job_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        self.failed_chunk_indices = list(failed_chunk_indices or [])
        details["failed_chunk_indices"] = self.failed_chunk_indices
        if job_id:
            details["job_id"] = job_id
        super().__init__(message, recoverable=False, details=details, **kwargs)


class ConcatFailure(ReelforgeError):
    """Joining rendered chunks into the final output failed."""

    def __init__(
        self,
        message: str,
        stderr: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if stderr:
            details["stderr"] = stderr[-500:]
        super().__init__(message, recoverable=False, details=details, **kwargs)


class AnalysisFailure(ReelforgeError):
    """The vision analysis call failed or returned an unusable verdict."""

    def __init__(
        self,
        message: str,
        asset_uri: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if asset_uri:
            details["asset_uri"] = asset_uri[:200]
        super().__init__(message, recoverable=True, details=details, **kwargs)


class ResourceNotFoundError(ReelforgeError):
    """Resource not found errors."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(message, recoverable=False, details=details, **kwargs)


class PipelineCancelled(ReelforgeError):
    """The project run was cancelled before it finished."""

    def __init__(self, message: str, project_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if project_id:
            details["project_id"] = project_id
        super().__init__(message, recoverable=False, details=details, **kwargs)
