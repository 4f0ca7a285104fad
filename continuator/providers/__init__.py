# Providers: one client per remote backend behind ProviderClient

from typing import Any

from ..credentials import CredentialResolver
from .base import (
    GenerationRequest,
    JobState,
    JobStatus,
    ProviderClient,
    ProviderJobHandle,
    ProviderKind,
    VideoVariant,
)
from .sora import SoraClient
from .veo import VeoClient

_CLIENTS: dict[ProviderKind, type[SoraClient] | type[VeoClient]] = {
    ProviderKind.SORA: SoraClient,
    ProviderKind.VEO: VeoClient,
}


def build_client(kind: ProviderKind | str, config: dict[str, Any], credentials: CredentialResolver) -> ProviderClient:
    """Construct the client for kind from config. The set of providers is closed."""
    return _CLIENTS[ProviderKind(kind)].from_config(config, credentials)


__all__ = [
    "GenerationRequest",
    "JobState",
    "JobStatus",
    "ProviderClient",
    "ProviderJobHandle",
    "ProviderKind",
    "VideoVariant",
    "SoraClient",
    "VeoClient",
    "build_client",
]
