"""
Concatenate finished clips into one video file. Requires FFmpeg on the system.
Stream copy only: inputs with mismatched encoding fail instead of being re-encoded.
"""
import logging
import subprocess
from pathlib import Path

from .errors import ConcatenationError

logger = logging.getLogger(__name__)

CONCAT_TIMEOUT_SECONDS = 600


class Stitcher:
    def __init__(self, *, ffmpeg_bin: str = "ffmpeg", timeout: float = CONCAT_TIMEOUT_SECONDS):
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout = timeout

    def concatenate(self, segment_paths: list[Path], output_path: Path) -> Path:
        """
        Concatenate segment files in order into output_path. All segments must have
        the same codec, resolution, and fps (-c copy).
        """
        if not segment_paths:
            raise ConcatenationError("concatenate: segment_paths cannot be empty")
        output_path = Path(output_path)

        # Concat demuxer: list file with lines "file 'path'"
        list_file = output_path.with_name(f".concat-{output_path.stem}.txt")
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(list_file, "w", encoding="utf-8") as f:
                for p in segment_paths:
                    path = Path(p).resolve()
                    escaped = path.as_posix().replace("'", "'\\''")
                    f.write(f"file '{escaped}'\n")
        except OSError as e:
            list_file.unlink(missing_ok=True)
            raise ConcatenationError(f"Cannot write concat list {list_file}: {e}") from e

        try:
            r = subprocess.run(
                [
                    self.ffmpeg_bin,
                    "-y",
                    "-v", "error",
                    "-f", "concat",
                    "-safe", "0",
                    "-i", str(list_file),
                    "-c", "copy",
                    str(output_path),
                ],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ConcatenationError(f"{self.ffmpeg_bin} not found on PATH") from e
        except subprocess.TimeoutExpired as e:
            output_path.unlink(missing_ok=True)
            raise ConcatenationError(f"{self.ffmpeg_bin} timed out concatenating {len(segment_paths)} clips") from e
        except OSError as e:
            raise ConcatenationError(f"Cannot run {self.ffmpeg_bin}: {e}") from e
        finally:
            list_file.unlink(missing_ok=True)

        if r.returncode != 0:
            output_path.unlink(missing_ok=True)
            stderr = (r.stderr or "").strip()[:300]
            raise ConcatenationError(f"{self.ffmpeg_bin} exited with status {r.returncode}: {stderr}")
        logger.info("Stitched %d clips → %s", len(segment_paths), output_path)
        return output_path
