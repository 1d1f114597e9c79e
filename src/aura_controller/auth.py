"""Client credentials flow against the Aura OAuth2 token endpoint."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests
from requests.auth import AuthBase

from .errors import TokenExchangeError, TransportFailureError
from .http import UnexpectedResponseError, parse_json

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TIMEOUT = 30.0


@dataclass(slots=True)
class OAuthToken:
    access_token: str
    expires_at: float

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at - 60  # refresh 1 min early


class ClientCredentialProvider:
    """Fetches and caches a client-credentials access token."""

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TOKEN_TIMEOUT,
        deadline: Optional[float] = None,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self._session = session or requests.Session()
        self._timeout = timeout
        self._deadline = deadline
        self._cached: Optional[OAuthToken] = None

    def acquire_token(self) -> str:
        if self._cached and not self._cached.is_expired():
            return self._cached.access_token

        self._cached = self._request_token()
        return self._cached.access_token

    def _request_token(self) -> OAuthToken:
        payload = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        timeout = self._timeout
        if self._deadline is not None:
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                raise TransportFailureError("reconciliation deadline exceeded before acquiring access token")
            timeout = min(timeout, remaining)
        try:
            response = self._session.post(self.token_url, data=payload, timeout=timeout)
        except requests.RequestException as exc:
            raise TransportFailureError(f"failed to acquire access token: {exc}") from exc
        if response.status_code >= 400:
            logger.error("Failed to acquire token from %s (status %s)", self.token_url, response.status_code)
            raise TokenExchangeError(status_code=response.status_code, body=response.text.strip())
        try:
            body = parse_json(response)
        except UnexpectedResponseError as exc:
            raise TokenExchangeError(status_code=response.status_code, body=str(exc)) from exc
        if not isinstance(body, dict) or not body.get("access_token"):
            raise TokenExchangeError(status_code=response.status_code, body="response carries no access_token")
        expires_in = int(body.get("expires_in", 3600))
        return OAuthToken(access_token=body["access_token"], expires_at=time.time() + expires_in)


class BearerTokenAuth(AuthBase):
    """Attaches the provider's current access token to every request."""

    def __init__(self, provider: ClientCredentialProvider) -> None:
        self.provider = provider

    def __call__(self, request: requests.PreparedRequest) -> requests.PreparedRequest:
        request.headers["Authorization"] = f"Bearer {self.provider.acquire_token()}"
        return request


def build_client(
    client_id: str,
    client_secret: str,
    token_url: str,
    base_session: requests.Session,
    timeout: float = DEFAULT_TOKEN_TIMEOUT,
    deadline: Optional[float] = None,
) -> requests.Session:
    """Return a session that authenticates with a client-credentials token.

    The returned session reuses the base session's adapters, headers and
    response hooks, so any logging layered on the base transport also sees the
    authenticated calls. The token exchange itself goes through the base
    session without the bearer layer, and ``deadline`` (a ``time.monotonic()``
    value) caps its timeout.
    """

    provider = ClientCredentialProvider(
        token_url=token_url,
        client_id=client_id,
        client_secret=client_secret,
        session=base_session,
        timeout=timeout,
        deadline=deadline,
    )
    session = requests.Session()
    session.adapters = base_session.adapters
    session.headers.update(base_session.headers)
    session.hooks["response"] = list(base_session.hooks.get("response", []))
    session.auth = BearerTokenAuth(provider)
    return session
