"""
HTTP Server
===========

FastAPI surface for job submission: create a project, stream its generation
progress as server-sent events, start a render and stream its chunk events,
cancel, and poll status.

Usage:
    uvicorn reelforge.server:app --port 8000
"""

import json
import logging
from typing import Optional, List, Dict, Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from .core.exceptions import ReelforgeError, ResourceNotFoundError, ValidationError
from .project.models import ProjectStatus
from .workflow.events import EventType
from .workflow.pipeline import MediaPipeline

logger = logging.getLogger(__name__)


class SceneInput(BaseModel):
    """One storyboard entry."""
    scene_id: Optional[str] = None
    narration: str = ""
    visual_direction: str = ""
    duration: float = Field(5.0, gt=0)
    scene_type: str = "content"
    content_type: Optional[str] = None
    visual_kind: Literal["image", "video"] = "image"
    music_direction: Optional[str] = None
    sound_effect_direction: Optional[str] = None
    provider_preferences: Optional[Dict[str, List[str]]] = None


class ProjectRequest(BaseModel):
    """Request model for project creation."""
    scenes: List[SceneInput] = Field(..., min_length=1)
    target_duration: Optional[float] = None
    aspect_ratio: Optional[str] = None
    composition_id: Optional[str] = None


def create_app(pipeline: Optional[MediaPipeline] = None) -> FastAPI:
    """Build the API around a pipeline (created on startup when not given)."""
    app = FastAPI(
        title="Reelforge API",
        description="Storyboard-to-video generation and chunked rendering",
        version="0.3.0",
    )
    app.state.pipeline = pipeline

    @app.on_event("startup")
    async def startup():
        if app.state.pipeline is None:
            app.state.pipeline = MediaPipeline()
            logger.info("Pipeline initialized")

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.pipeline is not None:
            await app.state.pipeline.close()

    def get_pipeline() -> MediaPipeline:
        if app.state.pipeline is None:
            raise HTTPException(status_code=503, detail="Pipeline not initialized")
        return app.state.pipeline

    @app.exception_handler(ReelforgeError)
    async def reelforge_error_handler(request: Request, exc: ReelforgeError):
        if isinstance(exc, ResourceNotFoundError):
            status_code = 404
        elif isinstance(exc, ValidationError):
            status_code = 409
        else:
            status_code = 500
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        current = app.state.pipeline
        return {
            "status": "healthy",
            "pipeline_ready": current is not None,
            "providers": sorted(current.providers) if current else [],
            "quality_analysis": bool(current and current.analyzer),
        }

    @app.post("/projects", status_code=201)
    async def create_project(request: ProjectRequest):
        """Create a project from a storyboard."""
        project_id = get_pipeline().create_project(
            [scene.model_dump(exclude_none=True) for scene in request.scenes],
            target_duration=request.target_duration,
            aspect_ratio=request.aspect_ratio,
            composition_id=request.composition_id,
        )
        return {"project_id": project_id, "status": ProjectStatus.DRAFT.value}

    @app.post("/projects/{project_id}/generate")
    async def generate(project_id: str):
        """
        Generate every scene's assets.

        Progress is streamed as server-sent events; the stream ends after
        ``project.ready`` or ``project.cancelled``.
        """
        current = get_pipeline()
        project = current.get_project(project_id)
        if project.status not in (ProjectStatus.DRAFT, ProjectStatus.ERROR):
            raise ValidationError(
                f"Cannot generate assets for a project in status {project.status.value}",
                field="status",
            )

        async def stream():
            try:
                async for event in current.generate_assets(project_id):
                    yield event.to_sse()
            except ReelforgeError as e:
                logger.error(f"Generation for {project_id} failed: {e.message}")
                yield f"event: error\ndata: {json.dumps(e.to_dict())}\n\n"

        return StreamingResponse(stream(), media_type="text/event-stream")

    @app.post("/projects/{project_id}/render", status_code=202)
    async def render(project_id: str):
        """Start rendering a ready project. Poll /status/{job_id} for progress."""
        job_id = await get_pipeline().render(project_id)
        return {
            "job_id": job_id,
            "status": "rendering",
            "message": "Render started. Stream /renders/{job_id}/events or poll /status/{job_id}.",
        }

    @app.get("/renders/{job_id}/events")
    async def render_events(job_id: str):
        """Stream a render job's chunk and completion events as server-sent events."""
        current = get_pipeline()
        current.get_status(job_id)

        async def stream():
            try:
                async for event in current.render_events(job_id):
                    yield event.to_sse()
            except ReelforgeError as e:
                yield f"event: error\ndata: {json.dumps(e.to_dict())}\n\n"

        return StreamingResponse(stream(), media_type="text/event-stream")

    @app.post("/projects/{project_id}/cancel")
    async def cancel(project_id: str):
        """Cancel a project's active generation or render."""
        cancelled = get_pipeline().cancel(project_id)
        return {"project_id": project_id, "cancelled": cancelled}

    @app.get("/status/{resource_id}")
    async def get_status(resource_id: str):
        """Get the status of a project or a render job."""
        return get_pipeline().get_status(resource_id)

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Reelforge API",
            "version": "0.3.0",
            "events": [event.value for event in EventType],
            "endpoints": {
                "create": "POST /projects",
                "generate": "POST /projects/{project_id}/generate",
                "render": "POST /projects/{project_id}/render",
                "render_events": "GET /renders/{job_id}/events",
                "cancel": "POST /projects/{project_id}/cancel",
                "status": "GET /status/{id}",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
