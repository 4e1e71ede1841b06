"""
Progress Events
===============

Events published while a project is generated and rendered. Each project run
owns one EventStream; consumers iterate it until the run closes it.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, AsyncIterator


class EventType(str, Enum):
    """Progress event names."""

    SCENE_GENERATED = "scene.generated"
    SCENE_CACHED = "scene.cached"
    SCENE_ANALYZED = "scene.analyzed"
    SCENE_REGENERATING = "scene.regenerating"
    SCENE_FAILED = "scene.failed"
    PROJECT_READY = "project.ready"
    PROJECT_CANCELLED = "project.cancelled"
    CHUNK_RENDERED = "chunk.rendered"
    JOB_COMPLETE = "job.complete"
    JOB_FAILED = "job.failed"


@dataclass
class ProgressEvent:
    """One progress notification."""

    type: EventType
    project_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "projectId": self.project_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_sse(self) -> str:
        """Server-sent events frame."""
        return f"event: {self.type.value}\ndata: {json.dumps(self.to_dict())}\n\n"


class EventStream:
    """
    Unbounded queue of progress events for one project run.

    The first reader drains the live queue; readers that arrive after the
    stream was drained get a replay of what was published before close.
    """

    _CLOSED = object()

    def __init__(self, project_id: str):
        self.project_id = project_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._drained = False
        self._published_before_close = 0
        self.history = []

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, event_type: EventType, data: Optional[Dict[str, Any]] = None) -> ProgressEvent:
        event = ProgressEvent(type=EventType(event_type), project_id=self.project_id, data=data or {})
        self.history.append(event)
        if not self._closed:
            await self._queue.put(event)
        return event

    async def emit(self, event_type: str, data: Dict[str, Any]) -> None:
        """Callback form used by the render coordinator and regeneration loop."""
        await self.publish(EventType(event_type), data)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._published_before_close = len(self.history)
            self._queue.put_nowait(self._CLOSED)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        if self._drained:
            for event in self.history[: self._published_before_close]:
                yield event
            return
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                self._drained = True
                return
            yield item
