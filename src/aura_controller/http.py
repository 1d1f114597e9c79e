"""HTTP utilities for working with the Aura API."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import requests
from requests import Response

from .errors import AuraControllerError

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 500


@dataclass(slots=True)
class UnexpectedResponseError(AuraControllerError):
    """A response that should carry a JSON document did not."""

    status_code: int
    url: str
    body_preview: str

    def __str__(self) -> str:
        return f"unexpected response from {self.url} (status {self.status_code}): {self.body_preview}"


def _request_url(response: Response) -> str:
    request = response.request
    return request.url if request is not None and request.url else "<unknown>"


def parse_json(response: Response) -> Any:
    """Decode a JSON body, raising UnexpectedResponseError for empty or non-JSON payloads."""

    if not response.content:
        raise UnexpectedResponseError(response.status_code, _request_url(response), "<empty body>")
    try:
        return response.json()
    except (json.JSONDecodeError, requests.JSONDecodeError) as exc:
        preview = " ".join(response.text[:PREVIEW_LIMIT].split())
        raise UnexpectedResponseError(response.status_code, _request_url(response), preview or "<no text>") from exc


def body_text(response: Response) -> str:
    """Response body as text, used verbatim in status messages."""
    return response.text.strip()


def log_response(response: Response, *args: Any, **kwargs: Any) -> Response:
    """Response hook logging method, URL, status and latency. Never logs bodies."""

    request = response.request
    logger.debug(
        "%s %s -> %s (%.3fs)",
        request.method if request else "?",
        request.url if request else "<unknown>",
        response.status_code,
        response.elapsed.total_seconds(),
    )
    return response


def new_session() -> requests.Session:
    """Base transport shared by the token exchange and the authenticated client."""

    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    session.hooks["response"].append(log_response)
    return session
