"""
Clip registry: persisted record of every clip created locally, keyed by id.
Stored as one JSON file in the data dir. Every mutation re-reads the file,
applies the change and atomically replaces it before returning.
"""
from __future__ import annotations

import fcntl
import json
import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import NotFoundError, RegistryError, ValidationError
from .models import ClipRecord, ClipStatus

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = "registry.json"
REGISTRY_VERSION = 1
_CLIP_ID_RE = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9._\-]*$")

# Resolved registry path -> lock shared by every ClipRegistry in the process
_PATH_LOCKS: dict[Path, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(path, threading.Lock())


def atomic_write_bytes(path: Path, data: bytes) -> Path:
    """Write to a temp file in the same dir, fsync, then rename over path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path


def validate_clip_id(clip_id: str) -> None:
    """Ids double as file stems in the data dir."""
    if not clip_id or not _CLIP_ID_RE.match(clip_id):
        raise ValidationError(
            f"Invalid clip id {clip_id!r}: use letters, digits, '.', '_' or '-', not starting with '.'"
        )


class ClipRegistry:
    """
    Index of ClipRecords (id → record, insertion order). Parent links are plain ids;
    chains are walked through the index rather than stored as pointers.
    """

    def __init__(self, data_dir: Path, *, filename: str = REGISTRY_FILENAME):
        self.path = Path(data_dir) / filename
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._lock = _lock_for(self.path.resolve())

    @contextmanager
    def _write_lock(self) -> Iterator[None]:
        """Serialize writers: threads through the shared path lock, processes through flock."""
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.lock_path, "a+b") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self) -> dict[str, ClipRecord]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise RegistryError(f"Registry {self.path} is not valid JSON: {e}") from e
        items = data.get("clips", []) if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise RegistryError(f"Registry {self.path} must be an object with a 'clips' list")
        clips: dict[str, ClipRecord] = {}
        for index, item in enumerate(items):
            try:
                record = ClipRecord.from_dict(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise RegistryError(f"Registry {self.path}: clip entry {index} is malformed: {e!r}") from e
            clips[record.id] = record
        return clips

    def _save(self, clips: dict[str, ClipRecord]) -> None:
        payload = {
            "version": REGISTRY_VERSION,
            "clips": [record.to_dict() for record in clips.values()],
        }
        text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
        atomic_write_bytes(self.path, text.encode("utf-8"))

    def get(self, clip_id: str) -> ClipRecord:
        """Return the record for clip_id. Raises NotFoundError if unknown."""
        record = self._load().get(clip_id)
        if record is None:
            raise NotFoundError(f"Clip not found: {clip_id}")
        return record

    def __contains__(self, clip_id: object) -> bool:
        return isinstance(clip_id, str) and clip_id in self._load()

    def list(self) -> list[ClipRecord]:
        """All records in insertion order."""
        return list(self._load().values())

    def put(self, record: ClipRecord) -> ClipRecord:
        """
        Insert or overwrite record and flush to disk before returning.
        Overwriting an existing id keeps its position in the listing.
        Raises ValidationError if the record breaks a registry invariant.
        """
        with self._write_lock():
            clips = self._load()
            self._validate(record, clips)
            clips[record.id] = record
            self._save(clips)
        logger.debug("Registry put %s (%s)", record.id, record.status.value)
        return record

    def chain(self, clip_id: str) -> list[ClipRecord]:
        """Ancestors of clip_id followed by the clip itself, root first."""
        clips = self._load()
        if clip_id not in clips:
            raise NotFoundError(f"Clip not found: {clip_id}")
        out: list[ClipRecord] = []
        seen: set[str] = set()
        current: str | None = clip_id
        while current is not None:
            if current in seen:
                raise ValidationError(f"Cycle in clip chain at {current}")
            seen.add(current)
            record = clips.get(current)
            if record is None:
                raise NotFoundError(f"Clip {out[-1].id} references unknown parent {current}")
            out.append(record)
            current = record.parent_id
        out.reverse()
        return out

    @staticmethod
    def _validate(record: ClipRecord, clips: dict[str, ClipRecord]) -> None:
        validate_clip_id(record.id)
        if not record.remote_job_id:
            raise ValidationError(f"Clip {record.id} has no remote job id")
        if (record.status is ClipStatus.READY) != bool(record.file_path):
            raise ValidationError(f"Clip {record.id}: file_path must be set exactly when status is ready")
        existing = clips.get(record.id)
        # A failed id may be reused for a fresh job; otherwise the remote job is fixed
        if (
            existing is not None
            and existing.status is not ClipStatus.FAILED
            and existing.remote_job_id != record.remote_job_id
        ):
            raise ValidationError(
                f"Clip {record.id} already tracks remote job {existing.remote_job_id}; refusing {record.remote_job_id}"
            )
        parent = record.parent_id
        seen = {record.id}
        while parent is not None:
            if parent in seen:
                raise ValidationError(f"Clip {record.id}: parent chain forms a cycle at {parent}")
            if parent not in clips:
                raise ValidationError(f"Clip {record.id}: unknown parent {parent}")
            seen.add(parent)
            parent = clips[parent].parent_id
