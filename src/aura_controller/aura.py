"""Typed client for the Neo4j Aura instance API."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import TransportFailureError, UpstreamRejectedError
from .http import UnexpectedResponseError, body_text, parse_json

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.neo4j.io/v1"
DEFAULT_TOKEN_URL = "https://api.neo4j.io/oauth/token"

INSTANCE_STATUS_RUNNING = "running"
INSTANCE_STATUS_CREATING = "creating"


def _malformed(response: requests.Response, detail: str) -> UnexpectedResponseError:
    request = response.request
    url = request.url if request is not None and request.url else "<unknown>"
    return UnexpectedResponseError(response.status_code, url, detail)


def _data(response: requests.Response, expected: type) -> Any:
    """The ``data`` member of a JSON envelope, checked against ``expected``."""

    body = parse_json(response)
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, expected):
        raise _malformed(response, f"missing or malformed data member in {body_text(response)[:200]}")
    return data


@dataclass(slots=True)
class InstanceSummary:
    id: str
    name: str
    tenant_id: str = ""
    cloud_provider: str = ""


@dataclass(slots=True)
class InstanceData:
    id: str
    name: str
    status: str
    tenant_id: str = ""
    cloud_provider: str = ""
    region: str = ""
    type: str = ""
    memory: str = ""
    connection_url: str = ""
    vector_optimized: Optional[bool] = None
    graph_analytics_plugin: Optional[bool] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InstanceData":
        return cls(
            id=payload["id"],
            name=payload.get("name", ""),
            status=payload.get("status", ""),
            tenant_id=payload.get("tenant_id", ""),
            cloud_provider=payload.get("cloud_provider", ""),
            region=payload.get("region", ""),
            type=payload.get("type", ""),
            memory=payload.get("memory", ""),
            connection_url=payload.get("connection_url", ""),
            vector_optimized=payload.get("vector_optimized"),
            graph_analytics_plugin=payload.get("graph_analytics_plugin"),
        )

    @property
    def is_running(self) -> bool:
        return self.status.lower() == INSTANCE_STATUS_RUNNING

    @property
    def is_creating(self) -> bool:
        return self.status.lower() == INSTANCE_STATUS_CREATING


@dataclass(slots=True)
class CreateInstanceRequest:
    name: str
    tenant_id: str
    cloud_provider: str
    region: str
    type: str
    version: str
    memory: str = ""
    vector_optimized: bool = False
    graph_analytics_plugin: bool = False

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "tenant_id": self.tenant_id,
            "cloud_provider": self.cloud_provider,
            "region": self.region,
            "type": self.type,
            "version": self.version,
            "vector_optimized": self.vector_optimized,
            "graph_analytics_plugin": self.graph_analytics_plugin,
        }
        if self.memory:
            payload["memory"] = self.memory
        return payload


@dataclass(slots=True)
class PatchInstanceRequest:
    memory: str
    vector_optimized: bool
    graph_analytics_plugin: bool

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "vector_optimized": self.vector_optimized,
            "graph_analytics_plugin": self.graph_analytics_plugin,
        }
        if self.memory:
            payload["memory"] = self.memory
        return payload


@dataclass(slots=True)
class CreatedInstance:
    id: str
    username: str
    password: str
    connection_url: str


class AuraClient:
    """Maps Aura API calls onto typed results and status-code errors.

    ``deadline`` is an absolute ``time.monotonic()`` value bounding the whole
    reconciliation pass; each call's timeout is capped by what is left of it.
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        deadline: Optional[float] = None,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._deadline = deadline

    def list_instances(self, tenant_id: str) -> List[InstanceSummary]:
        response = self._request("GET", "/instances", params={"tenantId": tenant_id})
        if response.status_code != 200:
            raise UpstreamRejectedError("get instance list", response.status_code, body_text(response))
        items = _data(response, list)
        try:
            return [
                InstanceSummary(
                    id=item["id"],
                    name=item.get("name", ""),
                    tenant_id=item.get("tenant_id", ""),
                    cloud_provider=item.get("cloud_provider", ""),
                )
                for item in items
            ]
        except (KeyError, TypeError, AttributeError) as exc:
            raise _malformed(response, f"instance list entry without id: {exc}") from exc

    def get_instance(self, instance_id: str) -> Tuple[bool, Optional[InstanceData]]:
        response = self._request("GET", f"/instances/{instance_id}")
        if response.status_code == 404:
            return False, None
        if response.status_code != 200:
            raise UpstreamRejectedError("get instance", response.status_code, body_text(response))
        data = _data(response, dict)
        try:
            return True, InstanceData.from_payload(data)
        except KeyError as exc:
            raise _malformed(response, f"instance without {exc}") from exc

    def create_instance(self, request: CreateInstanceRequest) -> CreatedInstance:
        response = self._request("POST", "/instances", json=request.to_payload())
        if response.status_code != 202:
            raise UpstreamRejectedError("create the instance", response.status_code, body_text(response))
        data = _data(response, dict)
        if not data.get("id"):
            raise _malformed(response, "created instance without id")
        return CreatedInstance(
            id=data["id"],
            username=data.get("username", ""),
            password=data.get("password", ""),
            connection_url=data.get("connection_url", ""),
        )

    def patch_instance(self, instance_id: str, request: PatchInstanceRequest) -> None:
        response = self._request("PATCH", f"/instances/{instance_id}", json=request.to_payload())
        if response.status_code != 202:
            raise UpstreamRejectedError("update instance", response.status_code, body_text(response))

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self._base_url}{path}"
        timeout = self._timeout
        if self._deadline is not None:
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                raise TransportFailureError(f"reconciliation deadline exceeded before {method} {url}")
            timeout = min(timeout, remaining)
        try:
            return self._session.request(method, url, timeout=timeout, **kwargs)
        except requests.Timeout as exc:
            raise TransportFailureError(f"{method} {url} timed out: {exc}") from exc
        except requests.RequestException as exc:
            raise TransportFailureError(f"{method} {url} failed: {exc}") from exc
