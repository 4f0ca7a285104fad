"""
Video manager: one entry point for creating clips, continuing them from their last
frame, running whole flows, downloading assets and stitching chains together.

Every clip is registered as pending as soon as the provider accepts the job, so a
crash mid-poll keeps the remote job id; `resume` picks such clips up again.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

from .concat import Stitcher
from .config import get_data_dir, get_poll_settings, load_config
from .credentials import CredentialResolver
from .errors import (
    ConfigError,
    ContinuatorError,
    GenerationTimeoutError,
    InvalidParentError,
    InvalidResponseError,
    JobFailedError,
    MissingClipError,
    NotFoundError,
    NotReadyError,
    TransportError,
    ValidationError,
)
from .frames import FrameExtractor
from .models import ClipRecord, ClipStatus, ProviderKind, VideoVariant
from .providers import GenerationRequest, JobState, JobStatus, ProviderClient, ProviderJobHandle, build_client
from .registry import ClipRegistry, atomic_write_bytes, validate_clip_id
from .workflow_utils import log_structured

logger = logging.getLogger(__name__)


@dataclass
class FlowResult:
    """Clips created by a flow (in order) and the stitched output."""

    clips: list[ClipRecord] = field(default_factory=list)
    chain_ids: list[str] = field(default_factory=list)
    output_path: Path | None = None


class VideoManager:
    """
    Coordinates provider clients, credentials, the registry, frame extraction and
    stitching. Collaborators can be injected; anything omitted is built from config.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        clients: dict[ProviderKind, ProviderClient] | None = None,
        credentials: CredentialResolver | None = None,
        registry: ClipRegistry | None = None,
        frames: FrameExtractor | None = None,
        stitcher: Stitcher | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if config is None:
            config = load_config()
        self.config = config
        try:
            self.provider = ProviderKind(config.get("provider") or "sora")
        except ValueError as e:
            raise ConfigError(f"Unknown provider {config.get('provider')!r}; use sora or veo") from e
        self.data_dir = get_data_dir(config)
        ffmpeg_bin = (config.get("ffmpeg") or {}).get("bin") or "ffmpeg"
        self.credentials = credentials or CredentialResolver.from_config(config)
        self.registry = registry or ClipRegistry(self.data_dir)
        self.frames = frames or FrameExtractor(ffmpeg_bin=ffmpeg_bin)
        self.stitcher = stitcher or Stitcher(ffmpeg_bin=ffmpeg_bin)
        self._clients: dict[ProviderKind, ProviderClient] = dict(clients or {})
        poll = get_poll_settings(config)
        self.poll_interval = poll["interval_seconds"]
        self.poll_backoff = poll["backoff"]
        self.poll_max_interval = max(poll["max_interval_seconds"], self.poll_interval)
        self.poll_timeout = poll["timeout_seconds"]
        self._sleep = sleep
        self._clock = clock

    def client_for(self, kind: ProviderKind) -> ProviderClient:
        """Client for kind, built on first use and shared for the manager's lifetime."""
        kind = ProviderKind(kind)
        client = self._clients.get(kind)
        if client is None:
            client = build_client(kind, self.config, self.credentials)
            self._clients[kind] = client
        return client

    def video_path(self, clip_id: str) -> Path:
        return self.data_dir / f"{clip_id}.mp4"

    # Lookup

    def get(self, clip_id: str) -> ClipRecord:
        return self.registry.get(clip_id)

    def list(self) -> list[ClipRecord]:
        return self.registry.list()

    # Creation

    def create(self, request: GenerationRequest) -> ClipRecord:
        """Generate a brand-new clip with the configured provider and store it locally."""
        return self._create(request, parent=None)

    def continue_clip(self, parent_id: str, request: GenerationRequest) -> ClipRecord:
        """
        Generate a continuation seeded with the last frame of parent_id.
        The parent must be ready; otherwise InvalidParentError before any remote call.
        """
        parent = self._ready_parent(parent_id)
        self._check_new_id(request.local_id)
        seed = self.frames.extract_last_frame(Path(parent.file_path))
        request = replace(request, seed_image=seed, seed_image_mime="image/png")
        return self._create(request, parent=parent)

    def flow(
        self,
        prompts: list[str],
        *,
        name: str,
        start_from: str | None = None,
        output_id: str | None = None,
        model: str | None = None,
        size: str | None = None,
        seconds: int | None = None,
    ) -> FlowResult:
        """
        Build a chain from prompts, strictly in order: create (unless start_from is
        given) then continue from each new clip. Clip ids are <name>-01, <name>-02, ...
        On the first failure the error propagates, clips made so far stay registered,
        and nothing is stitched. On success the full chain (start_from's ancestors
        first) is stitched into <output_id or name>.
        """
        if not prompts:
            raise ValidationError("flow needs at least one prompt")
        validate_clip_id(name)
        output_id = output_id or name
        clip_ids = [f"{name}-{i:02d}" for i in range(1, len(prompts) + 1)]
        for clip_id in clip_ids:
            self._check_new_id(clip_id)
        if output_id in clip_ids:
            raise ValidationError(f"Output id {output_id!r} collides with a clip this flow creates")
        self._check_output_id(output_id)

        result = FlowResult()
        if start_from is not None:
            try:
                ancestors = self.registry.chain(start_from)
            except NotFoundError as e:
                raise InvalidParentError(f"Flow start clip {start_from} not found") from e
            for record in ancestors:
                self._require_file(record, InvalidParentError)
            result.chain_ids = [record.id for record in ancestors]

        parent_id = start_from
        for step, (clip_id, prompt) in enumerate(zip(clip_ids, prompts), start=1):
            request = GenerationRequest(local_id=clip_id, prompt=prompt, model=model, size=size, seconds=seconds)
            logger.info("Flow %s: step %d/%d → %s", name, step, len(prompts), clip_id)
            try:
                if parent_id is None:
                    record = self.create(request)
                else:
                    record = self.continue_clip(parent_id, request)
            except ContinuatorError as e:
                kept = [r.id for r in result.clips]
                logger.error(
                    "Flow %s aborted at step %d/%d: %s (kept %s)",
                    name, step, len(prompts), e, ", ".join(kept) or "nothing",
                )
                raise
            result.clips.append(record)
            result.chain_ids.append(record.id)
            parent_id = record.id

        result.output_path = self.stitch(output_id, result.chain_ids)
        return result

    def resume(self, clip_id: str) -> ClipRecord:
        """
        Re-enter the poll loop for a clip that never finished locally (pending after a
        crash, or failed on timeout) using its persisted remote job id.
        """
        record = self.registry.get(clip_id)
        if record.is_ready:
            logger.info("Clip %s is already ready: %s", clip_id, record.file_path)
            return record
        client = self.client_for(record.provider)
        self.credentials.resolve(client.kind)
        if record.status is not ClipStatus.PENDING:
            record = replace(record, status=ClipStatus.PENDING, error=None, file_path=None)
            self.registry.put(record)
        return self._finish(record, client, client.handle_for(record.remote_job_id))

    # Assets

    def download(self, clip_id: str, variant: VideoVariant | str, output_path: Path) -> Path:
        """
        Write a variant of a ready clip to output_path, overwriting it. A Veo video
        is copied from the local file; everything else is fetched from the provider.
        """
        try:
            variant = VideoVariant(variant)
        except ValueError as e:
            choices = ", ".join(v.value for v in VideoVariant)
            raise ValidationError(f"Unknown variant {variant!r}; use one of {choices}") from e
        record = self.registry.get(clip_id)
        if not record.is_ready:
            raise NotReadyError(f"Clip {clip_id} is {record.status.value}, not ready")
        if record.provider is ProviderKind.VEO and variant is VideoVariant.VIDEO:
            # Vertex does not keep finished outputs around to fetch again
            data = self._require_file(record, NotFoundError).read_bytes()
        else:
            client = self.client_for(record.provider)
            data = client.fetch_asset(client.handle_for(record.remote_job_id), variant)
        path = atomic_write_bytes(Path(output_path), data)
        logger.info("Downloaded %s %s → %s", clip_id, variant.value, path)
        return path

    def stitch(self, output_id: str, clip_ids: list[str]) -> Path:
        """Concatenate ready clips in order into <data_dir>/<output_id>.mp4."""
        if not clip_ids:
            raise ValidationError("stitch requires at least one input clip")
        self._check_output_id(output_id)
        records = {record.id: record for record in self.registry.list()}
        paths: list[Path] = []
        for clip_id in clip_ids:
            record = records.get(clip_id)
            if record is None:
                raise MissingClipError(f"Unknown clip: {clip_id}")
            paths.append(self._require_file(record, MissingClipError))
        return self.stitcher.concatenate(paths, self.video_path(output_id))

    # Poll loop

    def wait_for_completion(self, client: ProviderClient, handle: ProviderJobHandle) -> JobStatus:
        """
        Poll until the job succeeds. Transport errors are logged and polling continues
        until the deadline; provider-reported failure raises JobFailedError and the
        deadline raises GenerationTimeoutError. The remote job is never cancelled.
        """
        deadline = self._clock() + self.poll_timeout
        interval = self.poll_interval
        attempt = 0
        while True:
            attempt += 1
            status: JobStatus | None
            try:
                status = client.poll(handle)
            except TransportError as e:
                logger.warning("Poll %s attempt %d failed: %s", handle.remote_id, attempt, e)
                status = None
            if status is not None:
                if status.state is JobState.SUCCEEDED:
                    return status
                if status.state is JobState.FAILED:
                    raise JobFailedError(
                        f"{handle.provider.value} job {handle.remote_id} failed: {status.reason or 'unknown error'}"
                    )
                if status.progress is not None:
                    logger.info("Job %s: %s%%", handle.remote_id, status.progress)
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise GenerationTimeoutError(
                    f"{handle.provider.value} job {handle.remote_id} not finished after {self.poll_timeout:.0f}s"
                )
            self._sleep(min(interval, remaining))
            interval = min(interval * self.poll_backoff, self.poll_max_interval)

    # Internals

    def _create(self, request: GenerationRequest, parent: ClipRecord | None) -> ClipRecord:
        self._check_new_id(request.local_id)
        client = self.client_for(self.provider)
        self.credentials.resolve(client.kind)
        request = self._with_defaults(request, client, parent)
        handle = client.submit(request)
        record = ClipRecord(
            id=request.local_id,
            provider=client.kind,
            remote_job_id=handle.remote_id,
            prompt=request.prompt,
            model=request.model,
            size=request.size,
            seconds=request.seconds,
            parent_id=parent.id if parent else None,
        )
        self.registry.put(record)
        log_structured(
            "info", event="clip_pending", clip_id=record.id, provider=record.provider.value,
            remote_job_id=record.remote_job_id, parent_id=record.parent_id,
        )
        return self._finish(record, client, handle)

    def _finish(self, record: ClipRecord, client: ProviderClient, handle: ProviderJobHandle) -> ClipRecord:
        try:
            status = self.wait_for_completion(client, handle)
            data = client.fetch_asset(handle, VideoVariant.VIDEO)
            if not data:
                raise InvalidResponseError(f"{client.kind.value} returned an empty video for {record.id}")
            path = atomic_write_bytes(self.video_path(record.id), data)
        except (ContinuatorError, OSError) as e:
            failed = record.mark_failed(str(e))
            self.registry.put(failed)
            log_structured("error", event="clip_failed", clip_id=record.id, error=str(e))
            raise
        ready = _apply_asset(record, status.asset).mark_ready(str(path))
        self.registry.put(ready)
        log_structured("info", event="clip_ready", clip_id=ready.id, file_path=ready.file_path)
        return ready

    @staticmethod
    def _with_defaults(
        request: GenerationRequest, client: ProviderClient, parent: ClipRecord | None
    ) -> GenerationRequest:
        """Fill model/size/seconds: request, then parent (same provider only for model/seconds), then client."""
        same_provider = parent is not None and parent.provider is client.kind
        model = request.model or (parent.model if same_provider else None) or client.default_model
        size = request.size or (parent.size if parent is not None else None) or client.default_size
        seconds = request.seconds
        if seconds is None:
            seconds = parent.seconds if same_provider and parent.seconds else client.default_seconds
        return replace(request, model=model, size=size, seconds=int(seconds))

    def _check_new_id(self, clip_id: str) -> None:
        validate_clip_id(clip_id)
        try:
            existing = self.registry.get(clip_id)
        except NotFoundError:
            return
        if existing.status is not ClipStatus.FAILED:
            raise ValidationError(f"Clip id {clip_id!r} already exists ({existing.status.value})")

    def _check_output_id(self, output_id: str) -> None:
        validate_clip_id(output_id)
        if output_id in self.registry:
            raise ValidationError(f"Output id {output_id!r} is a registered clip; pick another name")

    def _ready_parent(self, parent_id: str) -> ClipRecord:
        try:
            parent = self.registry.get(parent_id)
        except NotFoundError as e:
            raise InvalidParentError(f"Parent clip {parent_id} not found") from e
        self._require_file(parent, InvalidParentError)
        return parent

    @staticmethod
    def _require_file(record: ClipRecord, error: type[ContinuatorError]) -> Path:
        if not record.is_ready:
            raise error(f"Clip {record.id} is {record.status.value}, not ready")
        path = Path(record.file_path)
        if not path.is_file():
            raise error(f"Clip {record.id} video is missing: {path}")
        return path


def _apply_asset(record: ClipRecord, asset: dict[str, Any] | None) -> ClipRecord:
    """Take the provider's reported model/size/seconds where it gives them."""
    if not asset:
        return record
    updates: dict[str, Any] = {}
    if isinstance(asset.get("model"), str) and asset["model"]:
        updates["model"] = asset["model"]
    if isinstance(asset.get("size"), str) and asset["size"]:
        updates["size"] = asset["size"]
    if isinstance(asset.get("seconds"), int) and asset["seconds"] > 0:
        updates["seconds"] = asset["seconds"]
    return replace(record, **updates) if updates else record
