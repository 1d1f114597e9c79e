"""Kubernetes-backed record, secret and event stores."""
from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .errors import AuraControllerError, ConflictError, NotFoundError
from .models import API_GROUP, API_VERSION, KIND, AuraInstance, OwnerReference, Secret, utcnow

logger = logging.getLogger(__name__)

PLURAL = "aurainstances"
COMPONENT = "neo4j-aura-controller"


def load_kube_config(kubeconfig: Optional[str] = None) -> None:
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        return
    try:
        config.load_incluster_config()
    except config.ConfigException:
        logger.warning("Failed to load in-cluster config, trying local kubeconfig")
        config.load_kube_config()


def _api_error(action: str, exc: ApiException) -> AuraControllerError:
    return AuraControllerError(f"failed to {action}: {exc.status} {exc.reason}")


class KubeRecordStore:
    """AuraInstance custom resources accessed via CustomObjectsApi."""

    def __init__(self, api: Optional[client.CustomObjectsApi] = None, label_selector: Optional[str] = None) -> None:
        self._api = api or client.CustomObjectsApi()
        self._label_selector = label_selector

    def get(self, namespace: str, name: str) -> AuraInstance:
        try:
            obj = self._api.get_namespaced_custom_object(API_GROUP, API_VERSION, namespace, PLURAL, name)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(KIND, name) from exc
            raise _api_error(f"get {KIND} {namespace}/{name}", exc) from exc
        return AuraInstance.from_dict(obj)

    def list(self, namespace: Optional[str] = None) -> List[AuraInstance]:
        kwargs: Dict[str, Any] = {}
        if self._label_selector:
            kwargs["label_selector"] = self._label_selector
        try:
            if namespace:
                payload = self._api.list_namespaced_custom_object(API_GROUP, API_VERSION, namespace, PLURAL, **kwargs)
            else:
                payload = self._api.list_cluster_custom_object(API_GROUP, API_VERSION, PLURAL, **kwargs)
        except ApiException as exc:
            raise _api_error(f"list {PLURAL}", exc) from exc
        return [AuraInstance.from_dict(item) for item in payload.get("items", [])]

    def patch_status(
        self,
        namespace: str,
        name: str,
        patch: Dict[str, Any],
        resource_version: str,
    ) -> AuraInstance:
        body: Dict[str, Any] = {"status": patch}
        if resource_version:
            body["metadata"] = {"resourceVersion": resource_version}
        try:
            obj = self._api.patch_namespaced_custom_object_status(
                API_GROUP, API_VERSION, namespace, PLURAL, name, body
            )
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError(KIND, name) from exc
            if exc.status == 409:
                raise ConflictError(f"{KIND} \"{name}\" was modified: {exc.reason}") from exc
            raise _api_error(f"patch status of {KIND} {namespace}/{name}", exc) from exc
        return AuraInstance.from_dict(obj)


class KubeSecretStore:
    def __init__(self, api: Optional[client.CoreV1Api] = None) -> None:
        self._api = api or client.CoreV1Api()

    def get(self, namespace: str, name: str) -> Secret:
        try:
            secret = self._api.read_namespaced_secret(name, namespace)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError("Secret", name) from exc
            raise _api_error(f"read secret {namespace}/{name}", exc) from exc
        try:
            data = {
                key: base64.b64decode(value).decode("utf-8")
                for key, value in (secret.data or {}).items()
            }
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise AuraControllerError(f"failed to decode secret {namespace}/{name}: {exc}") from exc
        owners = [
            OwnerReference(api_version=ref.api_version, kind=ref.kind, name=ref.name, uid=ref.uid)
            for ref in (secret.metadata.owner_references or [])
        ]
        return Secret(name=name, namespace=namespace, data=data, owner_references=owners)

    def create(self, secret: Secret) -> Secret:
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=secret.name,
                namespace=secret.namespace,
                owner_references=[
                    client.V1OwnerReference(api_version=ref.api_version, kind=ref.kind, name=ref.name, uid=ref.uid)
                    for ref in secret.owner_references
                ],
            ),
            string_data=dict(secret.data),
            type="Opaque",
        )
        try:
            self._api.create_namespaced_secret(secret.namespace, body)
        except ApiException as exc:
            raise _api_error(f"create secret {secret.namespace}/{secret.name}", exc) from exc
        return secret

    def delete(self, namespace: str, name: str) -> None:
        try:
            self._api.delete_namespaced_secret(name, namespace)
        except ApiException as exc:
            if exc.status == 404:
                raise NotFoundError("Secret", name) from exc
            raise _api_error(f"delete secret {namespace}/{name}", exc) from exc


class KubeEventRecorder:
    """Emits core/v1 Events against the AuraInstance. Failures are only logged."""

    def __init__(self, api: Optional[client.CoreV1Api] = None) -> None:
        self._api = api or client.CoreV1Api()

    def event(self, instance: AuraInstance, event_type: str, reason: str, message: str) -> None:
        now = utcnow()
        body = client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                generate_name=f"{instance.metadata.name}.",
                namespace=instance.metadata.namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=instance.api_version,
                kind=instance.kind,
                name=instance.metadata.name,
                namespace=instance.metadata.namespace,
                uid=instance.metadata.uid,
            ),
            reason=reason,
            message=message,
            type=event_type,
            count=1,
            first_timestamp=now,
            last_timestamp=now,
            source=client.V1EventSource(component=COMPONENT),
        )
        try:
            self._api.create_namespaced_event(instance.metadata.namespace, body)
        except ApiException as exc:
            logger.warning("Failed to record event %s for '%s': %s", reason, instance.key, exc.reason)
