"""Store interfaces and a JSON file-backed implementation for local runs."""
from __future__ import annotations

import copy
import json
import logging
import uuid
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol

from .errors import AuraControllerError, ConflictError, NotFoundError
from .models import KIND, AuraInstance, AuraInstanceStatus, OwnerReference, Secret

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    def get(self, namespace: str, name: str) -> AuraInstance:
        ...

    def list(self, namespace: Optional[str] = None) -> List[AuraInstance]:
        ...

    def patch_status(
        self,
        namespace: str,
        name: str,
        patch: Dict[str, Any],
        resource_version: str,
    ) -> AuraInstance:
        ...


class SecretStore(Protocol):
    def get(self, namespace: str, name: str) -> Secret:
        ...

    def create(self, secret: Secret) -> Secret:
        ...

    def delete(self, namespace: str, name: str) -> None:
        ...


class EventRecorder(Protocol):
    def event(self, instance: AuraInstance, event_type: str, reason: str, message: str) -> None:
        ...


class LoggingEventRecorder:
    """Records events as log lines when no cluster event sink is available."""

    def event(self, instance: AuraInstance, event_type: str, reason: str, message: str) -> None:
        level = logging.WARNING if event_type == "Warning" else logging.INFO
        logger.log(level, "Event %s/%s on '%s': %s", event_type, reason, instance.key, message)


def apply_merge_patch(target: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """RFC 7386 merge patch; ``None`` values delete keys."""

    result = copy.deepcopy(target)
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = apply_merge_patch(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _secret_to_json(secret: Secret) -> dict:
    return {
        "name": secret.name,
        "namespace": secret.namespace,
        "data": dict(secret.data),
        "ownerReferences": [
            {"apiVersion": ref.api_version, "kind": ref.kind, "name": ref.name, "uid": ref.uid}
            for ref in secret.owner_references
        ],
    }


def _json_to_secret(data: dict) -> Secret:
    return Secret(
        name=data["name"],
        namespace=data["namespace"],
        data=dict(data.get("data", {})),
        owner_references=[
            OwnerReference(api_version=ref["apiVersion"], kind=ref["kind"], name=ref["name"], uid=ref["uid"])
            for ref in data.get("ownerReferences", [])
        ],
    )


class StateStore:
    """Very small JSON file-backed store for records and secrets.

    Each write bumps ``resourceVersion``; status patches must present the
    version they were computed against.
    """

    def __init__(self, root_path: str | Path):
        self._root = Path(root_path).expanduser().resolve()
        self._records_dir = self._root / "aurainstances"
        self._secrets_dir = self._root / "secrets"
        self._records_dir.mkdir(parents=True, exist_ok=True)
        self._secrets_dir.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self.records = FileRecordStore(self)
        self.secrets = FileSecretStore(self)

    @staticmethod
    def _file_name(namespace: str, name: str) -> str:
        safe_name = f"{namespace}_{name}".replace("/", "_")
        return f"{safe_name}.json"

    def _record_path(self, namespace: str, name: str) -> Path:
        return self._records_dir / self._file_name(namespace, name)

    def _secret_path(self, namespace: str, name: str) -> Path:
        return self._secrets_dir / self._file_name(namespace, name)

    def _read(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        return json.loads(path.read_text())

    def _write(self, path: Path, payload: dict) -> None:
        path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def apply(self, instance: AuraInstance) -> AuraInstance:
        """Create or update a record's spec, bumping generation on spec changes."""

        path = self._record_path(instance.metadata.namespace, instance.metadata.name)
        with self._lock:
            existing = self._read(path)
            desired = instance.to_dict()
            if existing is None:
                desired["metadata"]["uid"] = instance.metadata.uid or str(uuid.uuid4())
                desired["metadata"]["generation"] = 1
                desired["metadata"]["resourceVersion"] = "1"
                desired.pop("status", None)
                payload = desired
            else:
                payload = existing
                if existing.get("spec") != desired["spec"]:
                    payload["spec"] = desired["spec"]
                    payload["metadata"]["generation"] = int(existing["metadata"].get("generation", 0)) + 1
                payload["metadata"]["labels"] = desired["metadata"].get("labels", {})
                payload["metadata"]["resourceVersion"] = str(int(existing["metadata"]["resourceVersion"]) + 1)
            self._write(path, payload)
        logger.info("Applied %s '%s' (generation %s)", KIND, instance.key, payload["metadata"]["generation"])
        return AuraInstance.from_dict(payload)

    def delete_record(self, namespace: str, name: str) -> bool:
        path = self._record_path(namespace, name)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        return True


class FileRecordStore:
    def __init__(self, state: StateStore) -> None:
        self._state = state

    def get(self, namespace: str, name: str) -> AuraInstance:
        data = self._state._read(self._state._record_path(namespace, name))
        if data is None:
            raise NotFoundError(KIND, name)
        return AuraInstance.from_dict(data)

    def list(self, namespace: Optional[str] = None) -> List[AuraInstance]:
        records: List[AuraInstance] = []
        for path in sorted(self._state._records_dir.glob("*.json")):
            record = AuraInstance.from_dict(json.loads(path.read_text()))
            if namespace is None or record.metadata.namespace == namespace:
                records.append(record)
        return records

    def patch_status(
        self,
        namespace: str,
        name: str,
        patch: Dict[str, Any],
        resource_version: str,
    ) -> AuraInstance:
        path = self._state._record_path(namespace, name)
        with self._state._lock:
            data = self._state._read(path)
            if data is None:
                raise NotFoundError(KIND, name)
            current_version = str(data["metadata"].get("resourceVersion", ""))
            if resource_version and resource_version != current_version:
                raise ConflictError(
                    f"{KIND} \"{name}\" was modified: resourceVersion {resource_version} is stale (current {current_version})"
                )
            status = apply_merge_patch(data.get("status") or {}, patch)
            # round-trip to drop anything the status model does not know about
            data["status"] = AuraInstanceStatus.from_dict(status).to_dict()
            data["metadata"]["resourceVersion"] = str(int(current_version or 0) + 1)
            self._state._write(path, data)
        return AuraInstance.from_dict(data)


class FileSecretStore:
    def __init__(self, state: StateStore) -> None:
        self._state = state

    def get(self, namespace: str, name: str) -> Secret:
        data = self._state._read(self._state._secret_path(namespace, name))
        if data is None:
            raise NotFoundError("Secret", name)
        return _json_to_secret(data)

    def create(self, secret: Secret) -> Secret:
        path = self._state._secret_path(secret.namespace, secret.name)
        with self._state._lock:
            if path.exists():
                raise AuraControllerError(f'secrets "{secret.name}" already exists')
            self._state._write(path, _secret_to_json(secret))
        return secret

    def put(self, secret: Secret) -> Secret:
        """Create or overwrite a secret; used to seed credentials locally."""
        path = self._state._secret_path(secret.namespace, secret.name)
        with self._state._lock:
            self._state._write(path, _secret_to_json(secret))
        return secret

    def delete(self, namespace: str, name: str) -> None:
        path = self._state._secret_path(namespace, name)
        with self._state._lock:
            if not path.exists():
                raise NotFoundError("Secret", name)
            path.unlink()
