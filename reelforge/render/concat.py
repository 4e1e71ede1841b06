"""
Chunk Concatenation
===================

Downloads rendered chunks, joins them losslessly with ffmpeg, and publishes
the result to the object store.
"""

import asyncio
import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional, List

from ..core.exceptions import ConcatFailure, StorageError
from ..core.security import sanitize_filename
from ..storage.base import ObjectStore
from ..utils.media import concat_videos

logger = logging.getLogger(__name__)


class ChunkConcatenator:
    """Joins chunk outputs in index order."""

    def __init__(
        self,
        store: ObjectStore,
        ffmpeg_path: str = "ffmpeg",
        output_prefix: str = "renders/chunked",
        work_dir: Optional[str] = None,
        timeout: float = 600.0,
    ):
        self.store = store
        self.ffmpeg_path = ffmpeg_path
        self.output_prefix = output_prefix.strip("/")
        self.work_dir = work_dir
        self.timeout = timeout

    def output_key(self, project_id: str) -> str:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        return f"{self.output_prefix}/{sanitize_filename(project_id)}_{timestamp}.mp4"

    async def concat(self, chunk_uris: List[str], project_id: str) -> str:
        """
        Concatenate chunk outputs and upload the joined video.

        Args:
            chunk_uris: Chunk output URIs in playback order
            project_id: Used to name the published object

        Returns:
            URI of the published video

        Raises:
            ConcatFailure: If downloading or joining the chunks fails
        """
        if not chunk_uris:
            raise ConcatFailure("No chunk outputs to concatenate")

        if self.work_dir:
            Path(self.work_dir).mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix="reelforge_concat_", dir=self.work_dir) as tmp:
            tmp_path = Path(tmp)
            try:
                local_paths = await asyncio.gather(*(
                    self.store.download_to(uri, tmp_path / f"chunk_{index:03d}.mp4")
                    for index, uri in enumerate(chunk_uris, start=1)
                ))
            except StorageError as e:
                raise ConcatFailure(f"Could not fetch chunk outputs: {e.message}")

            output_path = tmp_path / "joined.mp4"
            await asyncio.to_thread(
                concat_videos,
                local_paths,
                output_path,
                self.ffmpeg_path,
                self.timeout,
            )

            key = self.output_key(project_id)
            uri = await self.store.put_file(output_path, key, "video/mp4")

        logger.info(f"Published {len(chunk_uris)} joined chunks as {key}")
        return uri
