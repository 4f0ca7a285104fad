"""
Abstract interface for remote video generation. One request → one remote job,
driven through submit / poll / fetch_asset. The manager owns the poll loop;
clients perform exactly one remote call sequence per method call.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models import ProviderKind, VideoVariant


class JobState(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class GenerationRequest:
    """
    What to generate. model/size/seconds left as None are defaulted by the manager.
    seed_image holds the still frame a continuation starts from.
    metadata carries provider-specific values (project/location for Veo).
    """

    local_id: str
    prompt: str
    model: str | None = None
    size: str | None = None
    seconds: int | None = None
    seed_image: bytes | None = None
    seed_image_mime: str = "image/png"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderJobHandle:
    """Remote job identifier plus provider tag; the only state the poll loop threads."""

    provider: ProviderKind
    remote_id: str


@dataclass
class JobStatus:
    """Snapshot from one poll call."""

    state: JobState
    asset: dict[str, Any] | None = None
    reason: str | None = None
    progress: float | None = None

    @classmethod
    def in_progress(cls, progress: float | None = None) -> "JobStatus":
        return cls(JobState.IN_PROGRESS, progress=progress)

    @classmethod
    def succeeded(cls, asset: dict[str, Any] | None = None) -> "JobStatus":
        return cls(JobState.SUCCEEDED, asset=asset or {})

    @classmethod
    def failed(cls, reason: str) -> "JobStatus":
        return cls(JobState.FAILED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return self.state is not JobState.IN_PROGRESS


class ProviderClient(ABC):
    """
    Common contract for video generation providers. Implementations translate a
    GenerationRequest into one provider's auth and wire format.
    """

    kind: ProviderKind

    def __init__(self, *, model: str, size: str, seconds: int):
        self._default_model = model
        self._default_size = size
        self._default_seconds = int(seconds)

    @property
    def default_model(self) -> str:
        return self._default_model

    @property
    def default_size(self) -> str:
        return self._default_size

    @property
    def default_seconds(self) -> int:
        return self._default_seconds

    @abstractmethod
    def submit(self, request: GenerationRequest) -> ProviderJobHandle:
        """
        Send the generation request (prompt, optional seed image, parameters).
        Raises AuthError/CredentialError, ValidationError or TransportError.
        """
        ...

    @abstractmethod
    def poll(self, handle: ProviderJobHandle) -> JobStatus:
        """One remote status check. Safe to call repeatedly."""
        ...

    @abstractmethod
    def fetch_asset(self, handle: ProviderJobHandle, variant: VideoVariant) -> bytes:
        """
        Download one variant of a finished job.
        Raises NotFoundError if the variant does not exist, NotReadyError if the job is unfinished.
        """
        ...

    def handle_for(self, remote_id: str) -> ProviderJobHandle:
        """Rebuild a handle from a persisted remote job id."""
        return ProviderJobHandle(self.kind, remote_id)
