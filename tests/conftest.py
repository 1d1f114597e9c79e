from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple

import pytest

from aura_controller.aura import (
    CreatedInstance,
    CreateInstanceRequest,
    InstanceData,
    InstanceSummary,
    PatchInstanceRequest,
)
from aura_controller.errors import AuraControllerError, ConflictError, NotFoundError, UpstreamRejectedError
from aura_controller.models import (
    AuraInstance,
    AuraInstanceSpec,
    AuraInstanceStatus,
    ObjectMeta,
    SecretReference,
    Secret,
)
from aura_controller.state import apply_merge_patch


class FakeSecretStore:
    def __init__(self) -> None:
        self.secrets: Dict[Tuple[str, str], Secret] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_create: Optional[Exception] = None

    def add(self, secret: Secret) -> Secret:
        self.secrets[(secret.namespace, secret.name)] = secret
        return secret

    def get(self, namespace: str, name: str) -> Secret:
        self.calls.append(("get", name))
        try:
            return copy.deepcopy(self.secrets[(namespace, name)])
        except KeyError:
            raise NotFoundError("Secret", name) from None

    def create(self, secret: Secret) -> Secret:
        self.calls.append(("create", secret.name))
        if self.fail_create is not None:
            raise self.fail_create
        if (secret.namespace, secret.name) in self.secrets:
            raise AuraControllerError(f'secrets "{secret.name}" already exists')
        self.secrets[(secret.namespace, secret.name)] = secret
        return secret

    def delete(self, namespace: str, name: str) -> None:
        self.calls.append(("delete", name))
        if (namespace, name) not in self.secrets:
            raise NotFoundError("Secret", name)
        del self.secrets[(namespace, name)]


class FakeRecordStore:
    def __init__(self) -> None:
        self.records: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.patches: List[Dict[str, Any]] = []
        self.conflicts_remaining = 0

    def add(self, instance: AuraInstance) -> AuraInstance:
        payload = instance.to_dict()
        payload["metadata"].setdefault("resourceVersion", "1")
        self.records[(instance.metadata.namespace, instance.metadata.name)] = payload
        return AuraInstance.from_dict(payload)

    def get(self, namespace: str, name: str) -> AuraInstance:
        try:
            return AuraInstance.from_dict(copy.deepcopy(self.records[(namespace, name)]))
        except KeyError:
            raise NotFoundError("AuraInstance", name) from None

    def list(self, namespace: Optional[str] = None) -> List[AuraInstance]:
        return [
            AuraInstance.from_dict(copy.deepcopy(payload))
            for (ns, _), payload in sorted(self.records.items())
            if namespace is None or ns == namespace
        ]

    def patch_status(self, namespace: str, name: str, patch: Dict[str, Any], resource_version: str) -> AuraInstance:
        payload = self.records[(namespace, name)]
        if self.conflicts_remaining > 0:
            self.conflicts_remaining -= 1
            # simulate a concurrent writer bumping the version
            payload["metadata"]["resourceVersion"] = str(int(payload["metadata"]["resourceVersion"]) + 1)
            raise ConflictError("stale resourceVersion")
        if resource_version != payload["metadata"]["resourceVersion"]:
            raise ConflictError("stale resourceVersion")
        self.patches.append(copy.deepcopy(patch))
        payload["status"] = apply_merge_patch(payload.get("status") or {}, patch)
        payload["metadata"]["resourceVersion"] = str(int(resource_version) + 1)
        return AuraInstance.from_dict(copy.deepcopy(payload))


class FakeEvents:
    def __init__(self) -> None:
        self.events: List[Tuple[str, str, str]] = []

    def event(self, instance: AuraInstance, event_type: str, reason: str, message: str) -> None:
        self.events.append((event_type, reason, message))


class FakeGateway:
    """In-memory Aura API recording every call."""

    def __init__(self) -> None:
        self.instances: Dict[str, InstanceData] = {}
        self.listed: List[InstanceSummary] = []
        self.calls: List[Tuple[str, Any]] = []
        self.get_error: Optional[Exception] = None
        self.patch_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.created: List[CreateInstanceRequest] = []
        self.patched: List[Tuple[str, PatchInstanceRequest]] = []
        self._next_id = 1

    def list_instances(self, tenant_id: str) -> List[InstanceSummary]:
        self.calls.append(("list", tenant_id))
        return list(self.listed)

    def get_instance(self, instance_id: str) -> Tuple[bool, Optional[InstanceData]]:
        self.calls.append(("get", instance_id))
        if self.get_error is not None:
            raise self.get_error
        data = self.instances.get(instance_id)
        return (data is not None), copy.deepcopy(data)

    def create_instance(self, request: CreateInstanceRequest) -> CreatedInstance:
        self.calls.append(("create", request.name))
        if self.create_error is not None:
            raise self.create_error
        self.created.append(request)
        instance_id = f"id-{self._next_id}"
        self._next_id += 1
        self.instances[instance_id] = InstanceData(
            id=instance_id,
            name=request.name,
            status="creating",
            tenant_id=request.tenant_id,
            memory=request.memory,
            vector_optimized=request.vector_optimized,
            graph_analytics_plugin=request.graph_analytics_plugin,
        )
        return CreatedInstance(
            id=instance_id,
            username="neo4j",
            password="s3cret",
            connection_url=f"neo4j+s://{instance_id}.databases.neo4j.io",
        )

    def patch_instance(self, instance_id: str, request: PatchInstanceRequest) -> None:
        self.calls.append(("patch", instance_id))
        if self.patch_error is not None:
            raise self.patch_error
        self.patched.append((instance_id, request))

    def reject_get(self, status_code: int, body: str) -> None:
        self.get_error = UpstreamRejectedError("get instance", status_code, body)


def make_instance(
    name: str = "graph",
    *,
    namespace: str = "default",
    uid: str = "uid-1",
    generation: int = 1,
    instance_id: str = "",
    **spec_overrides: Any,
) -> AuraInstance:
    spec = AuraInstanceSpec(
        tier="free-db",
        region="europe-west1",
        cloud_provider="gcp",
        neo4j_version="5",
        tenant_id="tenant-1",
        memory="1GB",
        secret=SecretReference(name="aura-credentials"),
    )
    for key, value in spec_overrides.items():
        setattr(spec, key, value)
    return AuraInstance(
        metadata=ObjectMeta(name=name, namespace=namespace, uid=uid, generation=generation, resource_version="1"),
        spec=spec,
        status=AuraInstanceStatus(instance_id=instance_id),
    )


def credentials_secret(name: str = "aura-credentials", namespace: str = "default", **data: str) -> Secret:
    payload = data or {"clientID": "client", "clientSecret": "secret"}
    return Secret(name=name, namespace=namespace, data=dict(payload))


@pytest.fixture
def secret_store() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def events() -> FakeEvents:
    return FakeEvents()
