"""
Persisted data model: one ClipRecord per locally registered clip.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ProviderKind(str, Enum):
    """Supported video generation backends."""

    SORA = "sora"
    VEO = "veo"


class VideoVariant(str, Enum):
    """Downloadable assets of a finished job."""

    VIDEO = "video"
    THUMBNAIL = "thumbnail"
    SPRITESHEET = "spritesheet"


class ClipStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class ClipRecord:
    """
    Registry entry. remote_job_id is set once when the provider accepts the job.
    file_path is present if and only if status is READY.
    """

    id: str
    provider: ProviderKind
    remote_job_id: str
    prompt: str
    model: str
    size: str
    seconds: int
    parent_id: str | None = None
    file_path: str | None = None
    status: ClipStatus = ClipStatus.PENDING
    error: str | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def is_ready(self) -> bool:
        return self.status is ClipStatus.READY

    def mark_ready(self, file_path: str) -> "ClipRecord":
        return replace(self, status=ClipStatus.READY, file_path=file_path, error=None, updated_at=utc_now())

    def mark_failed(self, error: str) -> "ClipRecord":
        return replace(self, status=ClipStatus.FAILED, file_path=None, error=error, updated_at=utc_now())

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the registry file. Enums → plain strings."""
        return {
            "id": self.id,
            "provider": self.provider.value,
            "remote_job_id": self.remote_job_id,
            "prompt": self.prompt,
            "model": self.model,
            "size": self.size,
            "seconds": self.seconds,
            "parent_id": self.parent_id,
            "file_path": self.file_path,
            "status": self.status.value,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClipRecord":
        return cls(
            id=data["id"],
            provider=ProviderKind(data.get("provider") or "sora"),
            remote_job_id=data["remote_job_id"],
            prompt=data.get("prompt", ""),
            model=data.get("model", ""),
            size=data.get("size", ""),
            seconds=int(data.get("seconds") or 0),
            parent_id=data.get("parent_id"),
            file_path=data.get("file_path"),
            status=ClipStatus(data.get("status") or "pending"),
            error=data.get("error"),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )
