# Continuator: remote AI video clips, continued from their last frame and stitched into chains

from .config import apply_overrides, load_config
from .credentials import CredentialResolver
from .errors import (
    APIError,
    AuthError,
    ConcatenationError,
    ConfigError,
    ContinuatorError,
    CredentialError,
    ExtractionError,
    GenerationTimeoutError,
    InvalidParentError,
    InvalidResponseError,
    JobFailedError,
    MissingClipError,
    NotFoundError,
    NotReadyError,
    RegistryError,
    TransportError,
    ValidationError,
)
from .manager import FlowResult, VideoManager
from .models import ClipRecord, ClipStatus, ProviderKind, VideoVariant
from .providers import GenerationRequest, ProviderClient, build_client
from .registry import ClipRegistry

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "AuthError",
    "ClipRecord",
    "ClipRegistry",
    "ClipStatus",
    "ConcatenationError",
    "ConfigError",
    "ContinuatorError",
    "CredentialError",
    "CredentialResolver",
    "ExtractionError",
    "FlowResult",
    "GenerationRequest",
    "GenerationTimeoutError",
    "InvalidParentError",
    "InvalidResponseError",
    "JobFailedError",
    "MissingClipError",
    "NotFoundError",
    "NotReadyError",
    "ProviderClient",
    "ProviderKind",
    "RegistryError",
    "TransportError",
    "ValidationError",
    "VideoManager",
    "VideoVariant",
    "apply_overrides",
    "build_client",
    "load_config",
]
