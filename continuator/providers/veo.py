"""
Google Veo client on Vertex AI: predictLongRunning submit, fetchPredictOperation poll.
The video arrives inline as base64 or, when a storage URI is configured, as a
Cloud Storage object fetched with the same OAuth token.
"""
import base64
import binascii
import logging
import re
from typing import Any
from urllib.parse import quote

from ..api_client import api_fetch, api_request
from ..credentials import CredentialResolver
from ..errors import InvalidResponseError, NotFoundError, NotReadyError, ValidationError
from .base import GenerationRequest, JobState, JobStatus, ProviderClient, ProviderJobHandle, ProviderKind, VideoVariant

logger = logging.getLogger(__name__)

VEO_SECONDS = (4, 6, 8)
_GCS_API = "https://storage.googleapis.com/storage/v1"

# projects/{p}/locations/{l}/publishers/google/models/{m}/operations/{id}
_OPERATION_RE = re.compile(
    r"^projects/(?P<project>[^/]+)/locations/(?P<location>[^/]+)/publishers/google/models/(?P<model>[^/]+)/operations/[^/]+$"
)

_SIZE_TO_RESOLUTION = {
    "1280x720": "720p",
    "720x1280": "720p",
    "1920x1080": "1080p",
    "1080x1920": "1080p",
}
_SIZE_TO_ASPECT = {
    "1280x720": "16:9",
    "1920x1080": "16:9",
    "720x1280": "9:16",
    "1080x1920": "9:16",
}


def size_to_resolution(size: str) -> str | None:
    return _SIZE_TO_RESOLUTION.get(size)


def size_to_aspect_ratio(size: str) -> str | None:
    return _SIZE_TO_ASPECT.get(size)


def parse_operation_name(name: str) -> dict[str, str]:
    """Split an operation name into project, location and model. Raises ValidationError if malformed."""
    m = _OPERATION_RE.match(name)
    if not m:
        raise ValidationError(f"Not a Veo operation name: {name!r}")
    return m.groupdict()


def _split_gcs_uri(uri: str) -> tuple[str, str]:
    if not uri.startswith("gs://"):
        raise InvalidResponseError(f"Unsupported storage URI: {uri}")
    bucket, _, obj = uri[len("gs://"):].partition("/")
    if not bucket or not obj:
        raise InvalidResponseError(f"Malformed storage URI: {uri}")
    return bucket, obj


class VeoClient(ProviderClient):
    kind = ProviderKind.VEO

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        project: str | None = None,
        location: str | None = None,
        model: str = "veo-3.0-generate-preview",
        size: str = "1280x720",
        seconds: int = 8,
        storage_uri: str | None = None,
        generate_audio: bool = True,
        enhance_prompt: bool = True,
        resolution: str | None = None,
        request_timeout: float = 120,
    ):
        super().__init__(model=model, size=size, seconds=seconds)
        self._credentials = credentials
        self.project = project
        self.location = location
        self.storage_uri = storage_uri
        self.generate_audio = generate_audio
        self.enhance_prompt = enhance_prompt
        self.resolution = resolution
        self._timeout = request_timeout
        # operation name -> finished response, held until the next fetch_asset takes it
        self._finished: dict[str, dict[str, Any]] = {}

    @classmethod
    def from_config(cls, config: dict[str, Any], credentials: CredentialResolver) -> "VeoClient":
        veo = config.get("veo", {})
        return cls(
            credentials,
            project=veo.get("project"),
            location=veo.get("location"),
            model=veo.get("model") or "veo-3.0-generate-preview",
            size=veo.get("size") or "1280x720",
            seconds=int(veo.get("seconds") or 8),
            storage_uri=veo.get("storage_uri"),
            generate_audio=bool(veo.get("generate_audio", True)),
            enhance_prompt=bool(veo.get("enhance_prompt", True)),
            resolution=veo.get("resolution"),
            request_timeout=float(veo.get("request_timeout") or 120),
        )

    def _token(self) -> str:
        return self._credentials.resolve(self.kind)

    @staticmethod
    def _model_url(project: str, location: str, model: str, method: str) -> str:
        return (
            f"https://{location}-aiplatform.googleapis.com/v1/projects/{project}"
            f"/locations/{location}/publishers/google/models/{model}:{method}"
        )

    def build_payload(self, request: GenerationRequest, size: str, seconds: int) -> dict[str, Any]:
        instance: dict[str, Any] = {"prompt": request.prompt}
        if request.seed_image is not None:
            instance["image"] = {
                "bytesBase64Encoded": base64.b64encode(request.seed_image).decode("ascii"),
                "mimeType": request.seed_image_mime,
            }
        parameters: dict[str, Any] = {
            "durationSeconds": seconds,
            "generateAudio": self.generate_audio,
            "enhancePrompt": self.enhance_prompt,
        }
        if self.storage_uri:
            parameters["storageUri"] = self.storage_uri
        resolution = self.resolution or size_to_resolution(size)
        if resolution:
            parameters["resolution"] = resolution
        aspect_ratio = size_to_aspect_ratio(size)
        if aspect_ratio:
            parameters["aspectRatio"] = aspect_ratio
        return {"instances": [instance], "parameters": parameters}

    def submit(self, request: GenerationRequest) -> ProviderJobHandle:
        project = request.metadata.get("project") or self.project
        location = request.metadata.get("location") or self.location
        if not project:
            raise ValidationError("Veo requires a Google Cloud project (--gcp-project or GOOGLE_CLOUD_PROJECT)")
        if not location:
            raise ValidationError("Veo requires a Google Cloud location (--gcp-location or GOOGLE_CLOUD_LOCATION)")
        model = request.model or self.default_model
        size = request.size or self.default_size
        seconds = request.seconds if request.seconds is not None else self.default_seconds
        if seconds not in VEO_SECONDS:
            raise ValidationError(f"Veo requires duration 4, 6, or 8 seconds (got {seconds})")
        if not request.prompt.strip():
            raise ValidationError("Prompt must not be empty")
        payload = self.build_payload(request, size, seconds)
        resp = api_request(
            "POST", self._model_url(project, location, model, "predictLongRunning"),
            token=self._token(), json_body=payload, timeout=self._timeout,
        )
        name = resp.get("name")
        if not name:
            raise InvalidResponseError("Veo predictLongRunning response has no operation name")
        logger.info("Veo operation %s submitted (%ss, %s)", name.rsplit("/", 1)[-1], seconds, size)
        return ProviderJobHandle(self.kind, name)

    def _fetch_operation(self, name: str) -> dict[str, Any]:
        parts = parse_operation_name(name)
        return api_request(
            "POST", self._model_url(parts["project"], parts["location"], parts["model"], "fetchPredictOperation"),
            token=self._token(), json_body={"operationName": name}, timeout=self._timeout,
        )

    def poll(self, handle: ProviderJobHandle) -> JobStatus:
        op = self._fetch_operation(handle.remote_id)
        error = op.get("error")
        if error:
            return JobStatus.failed(error.get("message") or "unknown error")
        if not op.get("done"):
            return JobStatus.in_progress()
        response = op.get("response") or {}
        videos = response.get("videos") or []
        if not videos:
            reasons = response.get("raiMediaFilteredReasons") or []
            if reasons:
                return JobStatus.failed("filtered by safety policy: " + "; ".join(reasons))
            return JobStatus.failed("operation completed without a video")
        self._finished[handle.remote_id] = response
        return JobStatus.succeeded(response)

    def fetch_asset(self, handle: ProviderJobHandle, variant: VideoVariant) -> bytes:
        variant = VideoVariant(variant)
        if variant is not VideoVariant.VIDEO:
            raise NotFoundError(f"Veo does not produce a {variant.value} asset")
        response = self._finished.pop(handle.remote_id, None)
        if response is None:
            status = self.poll(handle)
            if status.state is not JobState.SUCCEEDED:
                raise NotReadyError(
                    f"Veo operation {handle.remote_id} has not succeeded ({status.reason or status.state.value})"
                )
            response = self._finished.pop(handle.remote_id)
        videos = response.get("videos") or []
        for video in videos:
            encoded = video.get("bytesBase64Encoded")
            if encoded:
                try:
                    return base64.b64decode(encoded, validate=True)
                except (binascii.Error, ValueError) as e:
                    raise InvalidResponseError(f"Invalid base64 video payload: {e}") from e
        for video in videos:
            uri = video.get("gcsUri")
            if uri:
                return self._download_gcs(uri)
        raise InvalidResponseError("Veo response has neither inline bytes nor a storage URI")

    def _download_gcs(self, uri: str) -> bytes:
        bucket, obj = _split_gcs_uri(uri)
        url = f"{_GCS_API}/b/{bucket}/o/{quote(obj, safe='')}"
        logger.info("Downloading Veo output from %s", uri)
        return api_fetch(url, token=self._token(), params={"alt": "media"}, timeout=self._timeout)
