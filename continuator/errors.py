"""
Error taxonomy. Every component raises the most specific subclass it can detect;
the manager records the failure on the clip before re-raising.
"""


class ContinuatorError(Exception):
    """Base class for all errors raised by this package."""


class AuthError(ContinuatorError):
    """Credentials were rejected by the remote API (401/403)."""


class CredentialError(AuthError):
    """No credential source produced a token for the provider."""


class ValidationError(ContinuatorError):
    """Request or record is malformed for the target provider or registry."""


class ConfigError(ContinuatorError):
    """Configuration is missing a value or holds an unusable one."""


class TransportError(ContinuatorError):
    """Network-level failure talking to a remote API."""


class APIError(TransportError):
    """API call failed with an unexpected status."""
    def __init__(self, message: str, status_code: int | None = None, path: str = "", body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.path = path
        self.body = body


class InvalidResponseError(ContinuatorError):
    """Remote API answered with a payload we cannot interpret."""


class JobFailedError(ContinuatorError):
    """Provider reported a terminal failure for the generation job."""


class GenerationTimeoutError(ContinuatorError, TimeoutError):
    """Poll loop ran past its deadline without a terminal state."""


class NotFoundError(ContinuatorError):
    """Clip id or asset variant does not exist."""


class NotReadyError(ContinuatorError):
    """Job or clip has not reached a successful terminal state."""


class InvalidParentError(ContinuatorError):
    """Continuation parent is unknown or not ready."""


class MissingClipError(ContinuatorError):
    """Stitch input is unknown or not ready."""


class ExtractionError(ContinuatorError):
    """ffmpeg could not produce the last frame of a clip."""


class ConcatenationError(ContinuatorError):
    """ffmpeg could not concatenate the clips."""


class RegistryError(ContinuatorError):
    """Registry file exists but cannot be read."""
