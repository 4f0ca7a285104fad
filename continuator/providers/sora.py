"""
OpenAI Sora client: multipart submit, GET poll, GET content download.
Auth is a static bearer token (OPENAI_API_KEY).
"""
import logging
import re
from typing import Any

from ..api_client import api_fetch, api_request
from ..credentials import CredentialResolver
from ..errors import InvalidResponseError, NotFoundError, NotReadyError, ValidationError
from .base import GenerationRequest, JobStatus, ProviderClient, ProviderJobHandle, ProviderKind, VideoVariant

logger = logging.getLogger(__name__)

SORA_SECONDS = (4, 8, 12)
_SIZE_RE = re.compile(r"^\d+x\d+$")
_IN_PROGRESS = ("queued", "in_progress")


def _parse_seconds(value: Any) -> int | None:
    """API returns seconds as a number or a numeric string."""
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class SoraClient(ProviderClient):
    kind = ProviderKind.SORA

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        api_base: str = "https://api.openai.com/v1",
        model: str = "sora-2",
        size: str = "1280x720",
        seconds: int = 12,
        request_timeout: float = 60,
    ):
        super().__init__(model=model, size=size, seconds=seconds)
        self._credentials = credentials
        self._api_base = api_base.rstrip("/")
        self._timeout = request_timeout

    @classmethod
    def from_config(cls, config: dict[str, Any], credentials: CredentialResolver) -> "SoraClient":
        sora = config.get("sora", {})
        return cls(
            credentials,
            api_base=sora.get("api_base") or "https://api.openai.com/v1",
            model=sora.get("model") or "sora-2",
            size=sora.get("size") or "1280x720",
            seconds=int(sora.get("seconds") or 12),
            request_timeout=float(sora.get("request_timeout") or 60),
        )

    def _token(self) -> str:
        return self._credentials.resolve(self.kind)

    def _validate(self, request: GenerationRequest) -> tuple[str, str, int]:
        model = request.model or self.default_model
        size = request.size or self.default_size
        seconds = request.seconds if request.seconds is not None else self.default_seconds
        if seconds not in SORA_SECONDS:
            raise ValidationError(f"Sora requires duration {', '.join(map(str, SORA_SECONDS))} seconds (got {seconds})")
        if not _SIZE_RE.match(size):
            raise ValidationError(f"Sora size must look like 1280x720 (got {size!r})")
        if not request.prompt.strip():
            raise ValidationError("Prompt must not be empty")
        return model, size, seconds

    def submit(self, request: GenerationRequest) -> ProviderJobHandle:
        model, size, seconds = self._validate(request)
        form = {
            "model": model,
            "prompt": request.prompt,
            "seconds": str(seconds),
            "size": size,
        }
        files = None
        if request.seed_image is not None:
            ext = "jpg" if request.seed_image_mime == "image/jpeg" else "png"
            files = {"input_reference": (f"input.{ext}", request.seed_image, request.seed_image_mime)}
        job = api_request(
            "POST", f"{self._api_base}/videos",
            token=self._token(), form=form, files=files, timeout=self._timeout,
        )
        remote_id = job.get("id")
        if not remote_id:
            raise InvalidResponseError("Sora create response has no job id")
        logger.info("Sora job %s submitted (model=%s, %ss, %s)", remote_id, model, seconds, size)
        return ProviderJobHandle(self.kind, remote_id)

    def _retrieve(self, remote_id: str) -> dict:
        return api_request(
            "GET", f"{self._api_base}/videos/{remote_id}",
            token=self._token(), timeout=self._timeout,
        )

    def poll(self, handle: ProviderJobHandle) -> JobStatus:
        job = self._retrieve(handle.remote_id)
        status = job.get("status") or "unknown"
        if status == "completed":
            return JobStatus.succeeded({
                "model": job.get("model"),
                "size": job.get("size"),
                "seconds": _parse_seconds(job.get("seconds")),
                "created_at": job.get("created_at"),
            })
        if status == "failed":
            message = (job.get("error") or {}).get("message") or "unknown error"
            return JobStatus.failed(message)
        if status == "canceled":
            return JobStatus.failed("job was canceled")
        if status not in _IN_PROGRESS:
            logger.debug("Sora job %s reported unrecognised status %r", handle.remote_id, status)
        return JobStatus.in_progress(job.get("progress"))

    def fetch_asset(self, handle: ProviderJobHandle, variant: VideoVariant) -> bytes:
        variant = VideoVariant(variant)
        params = None if variant is VideoVariant.VIDEO else {"variant": variant.value}
        try:
            return api_fetch(
                f"{self._api_base}/videos/{handle.remote_id}/content",
                token=self._token(), params=params, timeout=self._timeout,
            )
        except (NotFoundError, ValidationError) as e:
            # Content endpoint does not say whether the job or the variant is missing
            job = self._retrieve(handle.remote_id)
            if job.get("status") != "completed":
                raise NotReadyError(
                    f"Sora job {handle.remote_id} is {job.get('status') or 'unknown'}, not completed"
                ) from e
            raise NotFoundError(f"Sora job {handle.remote_id} has no {variant.value} asset") from e
