"""
Pull the last frame of a clip as a PNG, used as the seed image of a continuation.
Requires FFmpeg on the system; one deterministic invocation per call, no retry.
"""
import io
import logging
import subprocess
import tempfile
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .errors import ExtractionError

logger = logging.getLogger(__name__)

EXTRACT_TIMEOUT_SECONDS = 300


class FrameExtractor:
    def __init__(self, *, ffmpeg_bin: str = "ffmpeg", timeout: float = EXTRACT_TIMEOUT_SECONDS):
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout = timeout

    def extract_last_frame(self, video_path: Path) -> bytes:
        """
        Return the final frame of video_path as PNG bytes.
        Raises ExtractionError if ffmpeg is missing, exits non-zero, or writes no image.
        """
        video_path = Path(video_path)
        if not video_path.is_file():
            raise ExtractionError(f"Video not found: {video_path}")
        with tempfile.TemporaryDirectory(prefix="continuator-frame-") as tmp:
            frame_path = Path(tmp) / "last.png"
            try:
                r = subprocess.run(
                    [
                        self.ffmpeg_bin,
                        "-v", "error",
                        "-i", str(video_path),
                        "-vf", "reverse",
                        "-frames:v", "1",
                        "-y",
                        str(frame_path),
                    ],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except FileNotFoundError as e:
                raise ExtractionError(f"{self.ffmpeg_bin} not found on PATH") from e
            except subprocess.TimeoutExpired as e:
                raise ExtractionError(f"{self.ffmpeg_bin} timed out extracting frame from {video_path}") from e
            except OSError as e:
                raise ExtractionError(f"Cannot run {self.ffmpeg_bin}: {e}") from e
            if r.returncode != 0:
                stderr = (r.stderr or "").strip()[:300]
                raise ExtractionError(f"{self.ffmpeg_bin} exited with status {r.returncode}: {stderr}")
            if not frame_path.exists() or frame_path.stat().st_size == 0:
                raise ExtractionError(f"{self.ffmpeg_bin} produced no frame for {video_path}")
            data = frame_path.read_bytes()
        _verify_image(data, video_path)
        logger.info("Extracted last frame of %s (%d bytes)", video_path.name, len(data))
        return data


def _verify_image(data: bytes, video_path: Path) -> None:
    """Raise ExtractionError unless data decodes as an image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ExtractionError(f"Frame extracted from {video_path} is not a valid image: {e}") from e
