"""
Credential resolution for providers. Order: explicit token > provider env var >
(Veo only) credential helper process such as `gcloud auth print-access-token`.
Tokens are cached per resolver for its lifetime and never refreshed; a token the
API later rejects surfaces as AuthError from the client.
"""
import logging
import os
import shlex
import subprocess
from typing import Any, Sequence

from .errors import CredentialError
from .models import ProviderKind

logger = logging.getLogger(__name__)

HELPER_TIMEOUT_SECONDS = 60


class CredentialResolver:
    """
    Per-manager token cache. Pass one instance to every client the manager builds
    so separate managers (e.g. in tests) never share cached tokens.
    """

    def __init__(
        self,
        *,
        explicit_tokens: dict[ProviderKind, str | None] | None = None,
        env_vars: dict[ProviderKind, str | None] | None = None,
        helpers: dict[ProviderKind, Sequence[str] | None] | None = None,
        environ: dict[str, str] | None = None,
    ):
        self._explicit = {k: v for k, v in (explicit_tokens or {}).items() if v}
        self._env_vars = dict(env_vars or {})
        self._helpers = {k: list(v) for k, v in (helpers or {}).items() if v}
        self._environ = environ
        self._cache: dict[ProviderKind, str] = {}

    @classmethod
    def from_config(cls, config: dict[str, Any], *, environ: dict[str, str] | None = None) -> "CredentialResolver":
        sora = config.get("sora", {})
        veo = config.get("veo", {})
        helper = veo.get("credential_helper")
        if isinstance(helper, str):
            helper = shlex.split(helper)
        return cls(
            explicit_tokens={
                ProviderKind.SORA: sora.get("api_key"),
                ProviderKind.VEO: veo.get("access_token"),
            },
            env_vars={
                ProviderKind.SORA: sora.get("api_key_env") or "OPENAI_API_KEY",
                ProviderKind.VEO: veo.get("access_token_env") or "GCP_ACCESS_TOKEN",
            },
            # Only Veo may shell out for a token
            helpers={ProviderKind.VEO: helper},
            environ=environ,
        )

    def resolve(self, provider: ProviderKind, explicit_token: str | None = None) -> str:
        """Return a bearer token for provider. Raises CredentialError if no source yields one."""
        provider = ProviderKind(provider)
        if explicit_token:
            return explicit_token
        cached = self._cache.get(provider)
        if cached:
            return cached
        token = self._lookup(provider)
        self._cache[provider] = token
        return token

    def clear(self) -> None:
        self._cache.clear()

    def _lookup(self, provider: ProviderKind) -> str:
        token = self._explicit.get(provider)
        if token:
            return token
        env_name = self._env_vars.get(provider)
        if env_name:
            environ = self._environ if self._environ is not None else os.environ
            token = (environ.get(env_name) or "").strip()
            if token:
                logger.debug("Using %s token from $%s", provider.value, env_name)
                return token
        helper = self._helpers.get(provider)
        if helper:
            return self._run_helper(provider, helper)
        hint = f" (set ${env_name})" if env_name else ""
        raise CredentialError(f"No credentials for {provider.value}{hint}")

    def _run_helper(self, provider: ProviderKind, command: list[str]) -> str:
        logger.info("Fetching %s access token via %s", provider.value, " ".join(command))
        try:
            r = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=HELPER_TIMEOUT_SECONDS,
            )
        except FileNotFoundError as e:
            raise CredentialError(f"Credential helper not found: {command[0]}") from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise CredentialError(f"Credential helper {command[0]} failed: {e}") from e
        if r.returncode != 0:
            stderr = (r.stderr or "").strip()[:300]
            raise CredentialError(f"Credential helper {command[0]} exited with status {r.returncode}: {stderr}")
        token = (r.stdout or "").strip()
        if not token:
            raise CredentialError(f"Credential helper {command[0]} printed no token")
        return token
