"""
Render Coordinator
==================

Dispatches the chunks of a render job to the remote render function with
bounded concurrency, retries failed chunks in isolation, and publishes the
joined output once every chunk is done.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable, Awaitable

from ..core.config import RenderConfig
from ..core.exceptions import RenderFailed, ConcatFailure, StorageError, PipelineCancelled
from ..core.security import redact_api_key
from ..project.models import RenderJob, RenderChunk, ChunkStatus, RenderJobStatus
from .composition import assert_assets_ready
from .concat import ChunkConcatenator
from .planner import build_chunk_props, validate_chunks
from .remote import RenderFunction

logger = logging.getLogger(__name__)

EmitFn = Callable[[str, Dict[str, Any]], Awaitable[None]]


async def _no_emit(event_type: str, data: Dict[str, Any]) -> None:
    return None


class RenderCoordinator:
    """
    Renders a planned job chunk by chunk.

    Each chunk holds one concurrency slot for all of its attempts, so retries
    never push the number of in-flight renders above
    ``max_concurrent_chunks``. A failing chunk does not cancel its siblings:
    their outputs stay on their chunks even when the job fails.
    """

    def __init__(
        self,
        render_function: RenderFunction,
        concatenator: ChunkConcatenator,
        config: Optional[RenderConfig] = None,
        emit: Optional[EmitFn] = None,
    ):
        self.render_function = render_function
        self.concatenator = concatenator
        self.config = config or RenderConfig()
        self.emit = emit or _no_emit

    async def render(
        self,
        job: RenderJob,
        input_props: Dict[str, Any],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Render every chunk of `job` and publish the result.

        Returns:
            URI of the final video

        Raises:
            ValidationError: If the props reference an asset that is not ready
            RenderFailed: If any chunk never rendered successfully
            ConcatFailure: If the chunk outputs could not be joined
            PipelineCancelled: If `cancel_event` was set during the render
        """
        assert_assets_ready(input_props)
        validate_chunks(job.chunks)

        cancel_event = cancel_event or asyncio.Event()
        semaphore = asyncio.Semaphore(self.config.max_concurrent_chunks)
        total = len(job.chunks)

        job.status = RenderJobStatus.RENDERING
        logger.info(
            f"Rendering job {job.job_id}: {total} chunk(s), "
            f"{job.total_frames} frames, concurrency {self.config.max_concurrent_chunks}"
        )

        async def run_chunk(chunk: RenderChunk) -> None:
            async with semaphore:
                await self._render_chunk(job, chunk, input_props, total, cancel_event)

        await asyncio.gather(*(run_chunk(chunk) for chunk in job.chunks))

        if cancel_event.is_set():
            job.status = RenderJobStatus.CANCELLED
            job.completed_at = datetime.now()
            raise PipelineCancelled(f"Render {job.job_id} cancelled", project_id=job.project_id)

        failed = [chunk.index for chunk in job.chunks if chunk.status != ChunkStatus.DONE]
        if failed:
            job.failed_chunk_indices = failed
            reasons = "; ".join(
                f"chunk {chunk.index}: {chunk.error_message}"
                for chunk in job.chunks
                if chunk.index in failed
            )
            await self._fail(job, f"{len(failed)} of {total} chunk(s) failed ({reasons})")
            raise RenderFailed(job.error_message, failed_chunk_indices=failed, job_id=job.job_id)

        if not job.is_chunked:
            output_uri = job.chunks[0].output_uri
        else:
            try:
                output_uri = await self.concatenator.concat(
                    [chunk.output_uri for chunk in job.chunks],
                    job.project_id,
                )
            except (ConcatFailure, StorageError) as e:
                await self._fail(job, f"Concatenation failed: {e.message}")
                raise

        job.output_uri = output_uri
        job.status = RenderJobStatus.COMPLETE
        job.completed_at = datetime.now()
        logger.info(f"Job {job.job_id} complete: {output_uri} ({job.duration_seconds:.2f}s)")
        await self.emit("job.complete", {"jobId": job.job_id, "outputUri": output_uri})
        return output_uri

    async def _render_chunk(
        self,
        job: RenderJob,
        chunk: RenderChunk,
        input_props: Dict[str, Any],
        total: int,
        cancel_event: asyncio.Event,
    ) -> None:
        props = build_chunk_props(input_props, chunk, total)
        max_attempts = self.config.chunk_retries + 1

        for attempt in range(max_attempts):
            if cancel_event.is_set():
                return

            chunk.attempts += 1
            chunk.status = ChunkStatus.RENDERING
            try:
                output_uri = await asyncio.wait_for(
                    self.render_function.render(
                        job.composition_id,
                        props,
                        chunk.start_frame,
                        chunk.end_frame,
                    ),
                    timeout=self.config.chunk_timeout,
                )
            except asyncio.TimeoutError:
                chunk.error_message = f"timed out after {self.config.chunk_timeout}s"
            except Exception as e:
                chunk.error_message = redact_api_key(str(e)) or type(e).__name__
            else:
                if cancel_event.is_set():
                    chunk.status = ChunkStatus.PENDING
                    return
                chunk.output_uri = output_uri
                chunk.status = ChunkStatus.DONE
                chunk.error_message = None
                logger.info(f"Chunk {chunk.index}/{total} rendered: {output_uri}")
                await self.emit("chunk.rendered", {"jobId": job.job_id, "index": chunk.index, "total": total})
                return

            logger.warning(
                f"Chunk {chunk.index}/{total} attempt {attempt + 1}/{max_attempts} failed: {chunk.error_message}"
            )
            if attempt < max_attempts - 1:
                await asyncio.sleep(self.config.retry_delay * (2 ** attempt))

        chunk.status = ChunkStatus.FAILED
        logger.error(f"Chunk {chunk.index}/{total} failed after {max_attempts} attempts")

    async def _fail(self, job: RenderJob, message: str) -> None:
        job.status = RenderJobStatus.FAILED
        job.error_message = message
        job.completed_at = datetime.now()
        logger.error(f"Job {job.job_id} failed: {message}")
        await self.emit(
            "job.failed",
            {
                "jobId": job.job_id,
                "failedChunkIndices": list(job.failed_chunk_indices),
                "reason": message,
            },
        )
