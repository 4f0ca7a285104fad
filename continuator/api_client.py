"""
HTTP client for provider API calls. Uses requests with bearer auth and maps HTTP
failures onto the package error taxonomy so callers never see raw requests errors.
No retries here: polling tolerance lives in the manager.
"""
import json
import logging
from typing import Any

import requests

from .errors import APIError, AuthError, InvalidResponseError, NotFoundError, TransportError, ValidationError

logger = logging.getLogger(__name__)

_API_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "continuator/0.1",
}

DEFAULT_TIMEOUT_SECONDS = 60
# Bytes of the error body kept on exceptions
_ERROR_BODY_LIMIT = 500


def _parse_json_response(resp: requests.Response, path: str) -> dict:
    """Parse JSON body; raise InvalidResponseError with context if invalid."""
    if not resp.content:
        return {}
    try:
        data = resp.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise InvalidResponseError(f"Invalid JSON response from {path}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidResponseError(f"Expected a JSON object from {path}, got {type(data).__name__}")
    return data


def _error_body(resp: requests.Response | None) -> str | None:
    if resp is None:
        return None
    try:
        text = resp.text
    except (UnicodeDecodeError, AttributeError):
        return None
    return text[:_ERROR_BODY_LIMIT] if text else None


def _raise_for_status(resp: requests.Response, method: str, path: str) -> None:
    """Translate an HTTP error status into the most specific package error."""
    status = resp.status_code
    if status < 400:
        return
    body = _error_body(resp)
    msg = f"API {method} {path} failed ({status})"
    if body:
        msg += f": {body[:300]}"
    if status in (401, 403):
        raise AuthError(msg)
    if status in (400, 422):
        raise ValidationError(msg)
    if status == 404:
        raise NotFoundError(msg)
    raise APIError(msg, status_code=status, path=path, body=body)


def _send(
    method: str,
    url: str,
    *,
    token: str | None,
    json_body: dict | None = None,
    form: dict[str, str] | None = None,
    files: dict[str, tuple[str, bytes, str]] | None = None,
    params: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    accept: str | None = None,
) -> requests.Response:
    headers = dict(_API_HEADERS)
    if accept:
        headers["Accept"] = accept
    if token:
        headers["Authorization"] = f"Bearer {token}"
    kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout}
    if json_body is not None:
        kwargs["json"] = json_body
    if form is not None:
        kwargs["data"] = form
    if files:
        kwargs["files"] = files
    if params:
        kwargs["params"] = params
    path = url.split("?", 1)[0]
    logger.debug("API %s %s", method, path)
    try:
        resp = requests.request(method, url, **kwargs)
    except requests.exceptions.RequestException as e:
        # Connection errors, timeouts, invalid URLs
        raise TransportError(f"API {method} {path} failed: {e}") from e
    _raise_for_status(resp, method, path)
    return resp


def api_request(
    method: str,
    url: str,
    *,
    token: str | None = None,
    json_body: dict | None = None,
    form: dict[str, str] | None = None,
    files: dict[str, tuple[str, bytes, str]] | None = None,
    params: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> dict:
    """
    Execute an API request and return the decoded JSON object.
    Raises AuthError, ValidationError, NotFoundError, APIError or TransportError.
    """
    resp = _send(
        method, url,
        token=token, json_body=json_body, form=form, files=files, params=params, timeout=timeout,
    )
    return _parse_json_response(resp, url.split("?", 1)[0])


def api_fetch(
    url: str,
    *,
    token: str | None = None,
    params: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> bytes:
    """GET raw bytes (video, image). Same error mapping as api_request."""
    resp = _send("GET", url, token=token, params=params, timeout=timeout, accept="*/*")
    return resp.content
