"""Domain models for AuraInstance resources and their generated secrets."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

API_GROUP = "neo4j.infra.doodle.com"
API_VERSION = "v1beta1"
KIND = "AuraInstance"

CONDITION_READY = "Ready"
CONDITION_RECONCILING = "Reconciling"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

DEFAULT_CLIENT_ID_KEY = "clientID"
DEFAULT_CLIENT_SECRET_KEY = "clientSecret"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration such as ``30s``, ``5m`` or ``1h30m``."""

    text = value.strip()
    if text in {"0", ""}:
        return timedelta(0)
    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text) or position == 0:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * seconds)


def format_duration(value: timedelta) -> str:
    total = value.total_seconds()
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    parts = []
    if hours:
        parts.append(f"{int(hours)}h")
    if minutes:
        parts.append(f"{int(minutes)}m")
    if seconds or not parts:
        parts.append(f"{seconds:g}s")
    return sign + "".join(parts)


def serialize_datetime(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat() + "Z"


def deserialize_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.rstrip("Z")).replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _optional_duration(raw: Any) -> Optional[timedelta]:
    if raw in (None, ""):
        return None
    return parse_duration(str(raw))


@dataclass(slots=True)
class SecretReference:
    """Points at the secret holding Aura API client credentials."""

    name: str = ""
    client_id_key: str = ""
    client_secret_key: str = ""

    @property
    def id_key(self) -> str:
        return self.client_id_key or DEFAULT_CLIENT_ID_KEY

    @property
    def secret_key(self) -> str:
        return self.client_secret_key or DEFAULT_CLIENT_SECRET_KEY


@dataclass(slots=True)
class AuraInstanceSpec:
    tier: str = ""
    region: str = ""
    cloud_provider: str = ""
    neo4j_version: str = ""
    tenant_id: str = ""
    memory: str = ""
    secret: SecretReference = field(default_factory=SecretReference)
    connection_secret: str = ""
    vector_optimized: bool = False
    graph_analytics_plugin: bool = False
    suspend: bool = False
    timeout: Optional[timedelta] = None
    interval: Optional[timedelta] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AuraInstanceSpec":
        secret = raw.get("secret") or {}
        connection_secret = raw.get("connectionSecret") or {}
        return cls(
            tier=raw.get("tier", ""),
            region=raw.get("region", ""),
            cloud_provider=raw.get("cloudProvider", ""),
            neo4j_version=raw.get("neo4jVersion", ""),
            tenant_id=raw.get("tenantID", ""),
            memory=raw.get("memory", ""),
            secret=SecretReference(
                name=secret.get("name", ""),
                client_id_key=secret.get("clientIDKey", ""),
                client_secret_key=secret.get("clientSecretKey", ""),
            ),
            connection_secret=connection_secret.get("name", ""),
            vector_optimized=bool(raw.get("vectorOptimized", False)),
            graph_analytics_plugin=bool(raw.get("graphAnalyticsPlugin", False)),
            suspend=bool(raw.get("suspend", False)),
            timeout=_optional_duration(raw.get("timeout")),
            interval=_optional_duration(raw.get("interval")),
        )

    def to_dict(self) -> Dict[str, Any]:
        secret: Dict[str, Any] = {"name": self.secret.name}
        if self.secret.client_id_key:
            secret["clientIDKey"] = self.secret.client_id_key
        if self.secret.client_secret_key:
            secret["clientSecretKey"] = self.secret.client_secret_key
        payload: Dict[str, Any] = {
            "tier": self.tier,
            "region": self.region,
            "cloudProvider": self.cloud_provider,
            "neo4jVersion": self.neo4j_version,
            "tenantID": self.tenant_id,
            "secret": secret,
        }
        if self.memory:
            payload["memory"] = self.memory
        if self.connection_secret:
            payload["connectionSecret"] = {"name": self.connection_secret}
        if self.vector_optimized:
            payload["vectorOptimized"] = True
        if self.graph_analytics_plugin:
            payload["graphAnalyticsPlugin"] = True
        if self.suspend:
            payload["suspend"] = True
        if self.timeout is not None:
            payload["timeout"] = format_duration(self.timeout)
        if self.interval is not None:
            payload["interval"] = format_duration(self.interval)
        return payload


@dataclass(slots=True)
class Condition:
    type: str
    status: str
    reason: str
    message: str
    observed_generation: int = 0
    last_transition_time: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Condition":
        transition = raw.get("lastTransitionTime")
        return cls(
            type=raw["type"],
            status=raw.get("status", CONDITION_UNKNOWN),
            reason=raw.get("reason", ""),
            message=raw.get("message", ""),
            observed_generation=int(raw.get("observedGeneration", 0)),
            last_transition_time=deserialize_datetime(transition) if transition else utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "observedGeneration": self.observed_generation,
            "lastTransitionTime": serialize_datetime(self.last_transition_time),
        }


@dataclass(slots=True)
class AuraInstanceStatus:
    conditions: List[Condition] = field(default_factory=list)
    observed_generation: int = 0
    instance_id: str = ""
    connection_secret: str = ""
    instance_status: str = ""

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "AuraInstanceStatus":
        raw = raw or {}
        return cls(
            conditions=[Condition.from_dict(item) for item in raw.get("conditions") or []],
            observed_generation=int(raw.get("observedGeneration", 0)),
            instance_id=raw.get("instanceId", ""),
            # the CRD stores the connection secret name under connectionUri
            connection_secret=raw.get("connectionUri", ""),
            instance_status=raw.get("instanceStatus", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.conditions:
            payload["conditions"] = [condition.to_dict() for condition in self.conditions]
        if self.observed_generation:
            payload["observedGeneration"] = self.observed_generation
        if self.instance_id:
            payload["instanceId"] = self.instance_id
        if self.connection_secret:
            payload["connectionUri"] = self.connection_secret
        if self.instance_status:
            payload["instanceStatus"] = self.instance_status
        return payload


@dataclass(slots=True)
class ObjectMeta:
    name: str
    namespace: str = "default"
    uid: str = ""
    generation: int = 0
    resource_version: str = ""
    labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=raw["name"],
            namespace=raw.get("namespace") or "default",
            uid=raw.get("uid", ""),
            generation=int(raw.get("generation") or 0),
            resource_version=str(raw.get("resourceVersion") or ""),
            labels=dict(raw.get("labels") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid:
            payload["uid"] = self.uid
        if self.generation:
            payload["generation"] = self.generation
        if self.resource_version:
            payload["resourceVersion"] = self.resource_version
        if self.labels:
            payload["labels"] = dict(self.labels)
        return payload


@dataclass(slots=True)
class AuraInstance:
    """Desired state of one Aura instance plus its observed status."""

    metadata: ObjectMeta
    spec: AuraInstanceSpec = field(default_factory=AuraInstanceSpec)
    status: AuraInstanceStatus = field(default_factory=AuraInstanceStatus)

    api_version = f"{API_GROUP}/{API_VERSION}"
    kind = KIND

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def connection_secret_name(self) -> str:
        return self.spec.connection_secret or f"{self.metadata.name}-connection"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AuraInstance":
        return cls(
            metadata=ObjectMeta.from_dict(raw.get("metadata") or {}),
            spec=AuraInstanceSpec.from_dict(raw.get("spec") or {}),
            status=AuraInstanceStatus.from_dict(raw.get("status")),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
        }
        status = self.status.to_dict()
        if status:
            payload["status"] = status
        return payload


@dataclass(slots=True)
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str

    @classmethod
    def for_instance(cls, instance: AuraInstance) -> "OwnerReference":
        return cls(
            api_version=instance.api_version,
            kind=instance.kind,
            name=instance.metadata.name,
            uid=instance.metadata.uid,
        )


@dataclass(slots=True)
class Secret:
    """Key/value secret as read from or written to the secret store."""

    name: str
    namespace: str
    data: Dict[str, str] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)


def connection_secret_for(instance: AuraInstance, username: str, password: str, connection_url: str) -> Secret:
    """Build the connection secret for a freshly created instance."""

    return Secret(
        name=instance.connection_secret_name,
        namespace=instance.metadata.namespace,
        data={
            "username": username,
            "password": password,
            "connectionURL": connection_url,
        },
        owner_references=[OwnerReference.for_instance(instance)],
    )
