"""
Media Utilities
===============

ffmpeg/ffprobe and Pillow helpers. All functions are blocking; async callers
run them with ``asyncio.to_thread``.
"""

import io
import logging
import subprocess
from pathlib import Path
from typing import Optional, List, Tuple, Union, Sequence

from PIL import Image, UnidentifiedImageError

from ..core.exceptions import ConcatFailure, ValidationError

logger = logging.getLogger(__name__)

# Subprocess timeout in seconds for quick probes
PROBE_TIMEOUT = 30


def probe_duration(video_path: Union[str, Path], ffprobe_path: str = "ffprobe") -> Optional[float]:
    """Duration of a media file in seconds, or None if ffprobe cannot tell."""
    try:
        result = subprocess.run(
            [
                ffprobe_path, "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                str(video_path),
            ],
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT,
        )
        return float(result.stdout.strip())
    except (subprocess.SubprocessError, FileNotFoundError, ValueError):
        return None


def extract_frames(
    video_path: Union[str, Path],
    output_dir: Union[str, Path],
    count: int = 3,
    ffmpeg_path: str = "ffmpeg",
    quality: int = 90,
) -> List[Path]:
    """
    Extract `count` evenly spaced frames from a video as JPEG files.

    Frames are taken from the middle of `count` equal segments, so a single
    frame comes from the midpoint and never from a black lead-in.

    Returns:
        Paths of the frames that were written (may be fewer than `count`)
    """
    video_path = Path(video_path)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    duration = probe_duration(video_path, ffprobe_path=_ffprobe_for(ffmpeg_path)) or 0.0
    frames: List[Path] = []

    for i in range(count):
        timestamp = duration * (i + 0.5) / count if duration else 0.0
        output_path = output_dir / f"frame_{i:02d}.jpg"
        cmd = [
            ffmpeg_path, "-y",
            "-ss", f"{timestamp:.3f}",
            "-i", str(video_path),
            "-vframes", "1",
            "-q:v", str(int((100 - quality) / 3) + 1),
            str(output_path),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=PROBE_TIMEOUT)
        except (subprocess.SubprocessError, FileNotFoundError) as e:
            logger.error(f"Frame extraction failed: {e}")
            break

        if output_path.exists():
            frames.append(output_path)
        else:
            logger.warning(f"No frame at {timestamp:.2f}s: {result.stderr[-200:]}")

    return frames


def concat_videos(
    video_paths: Sequence[Union[str, Path]],
    output_path: Union[str, Path],
    ffmpeg_path: str = "ffmpeg",
    timeout: float = 600.0,
) -> Path:
    """
    Join videos with the concat demuxer, copying streams without re-encoding.

    Raises:
        ConcatFailure: If ffmpeg is missing, fails, times out or writes nothing
    """
    if not video_paths:
        raise ValidationError("Nothing to concatenate", field="video_paths")

    output_path = Path(output_path)
    list_path = output_path.with_suffix(".txt")
    with open(list_path, "w") as f:
        for vp in video_paths:
            f.write(f"file '{Path(vp).absolute()}'\n")

    cmd = [
        ffmpeg_path, "-y",
        "-f", "concat",
        "-safe", "0",
        "-i", str(list_path),
        "-c", "copy",
        "-movflags", "+faststart",
        str(output_path),
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        raise ConcatFailure(f"ffmpeg not found at {ffmpeg_path}")
    except subprocess.TimeoutExpired:
        raise ConcatFailure(f"ffmpeg concat timed out after {timeout}s")
    finally:
        list_path.unlink(missing_ok=True)

    if result.returncode != 0 or not output_path.exists() or output_path.stat().st_size == 0:
        raise ConcatFailure(
            f"ffmpeg concat failed with exit code {result.returncode}",
            stderr=result.stderr,
        )

    logger.info(f"Concatenated {len(video_paths)} videos to {output_path}")
    return output_path


def downscale_image(data: bytes, max_size: int = 1024, quality: int = 85) -> Tuple[bytes, str]:
    """
    Shrink an image so its longest side is at most `max_size`, re-encoded as JPEG.

    Returns:
        Tuple of (jpeg_bytes, mime_type)

    Raises:
        ValidationError: If the bytes are not a readable image
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            longest = max(width, height)
            if longest > max_size:
                scale = max_size / longest
                img = img.resize((max(1, int(width * scale)), max(1, int(height * scale))), Image.Resampling.LANCZOS)
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")

            buffer = io.BytesIO()
            img.save(buffer, "JPEG", quality=quality)
            return buffer.getvalue(), "image/jpeg"
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Unreadable image: {e}", field="image")


def _ffprobe_for(ffmpeg_path: str) -> str:
    path = Path(ffmpeg_path)
    if path.name == "ffmpeg" and path.parent != Path("."):
        return str(path.with_name("ffprobe"))
    return "ffprobe"
