"""Reconciliation decision logic for a single AuraInstance pass.

The engine works on the record it is handed (callers pass a private copy),
talks to the Aura API through an :class:`~aura_controller.aura.AuraClient`
and to the secret store for the generated connection secret. It raises on
failure and leaves whatever status it had already computed on the record, so
the caller can persist it together with the failure condition.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Protocol, Tuple

from .aura import CreatedInstance, CreateInstanceRequest, InstanceData, InstanceSummary, PatchInstanceRequest
from .conditions import clear_reconciling, mark_ready, mark_reconciling
from .errors import (
    AuraControllerError,
    CreateFollowupFailedError,
    NotFoundError,
    OwnershipMismatchError,
)
from .models import CONDITION_FALSE, CONDITION_TRUE, AuraInstance, connection_secret_for
from .state import EventRecorder, LoggingEventRecorder, SecretStore

logger = logging.getLogger(__name__)

PROVISIONING_REQUEUE_DELAY = timedelta(seconds=30)


class InstanceGateway(Protocol):
    def list_instances(self, tenant_id: str) -> list[InstanceSummary]:
        ...

    def get_instance(self, instance_id: str) -> Tuple[bool, Optional[InstanceData]]:
        ...

    def create_instance(self, request: CreateInstanceRequest) -> CreatedInstance:
        ...

    def patch_instance(self, instance_id: str, request: PatchInstanceRequest) -> None:
        ...


@dataclass(slots=True)
class ReconcileResult:
    """Re-schedule hint returned to the dispatcher.

    ``requeue`` asks for an immediate re-run, ``requeue_after`` for a delayed
    one. ``error`` is set when the pass failed and the default backoff applies.
    """

    requeue: bool = False
    requeue_after: Optional[timedelta] = None
    error: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def find_instance_by_name(instances: list[InstanceSummary], name: str) -> Optional[InstanceSummary]:
    """First remote instance whose name equals ``name`` exactly."""

    matches = [item for item in instances if item.name == name]
    if len(matches) > 1:
        logger.warning(
            "Found %d Aura instances named '%s' (%s); adopting the first one",
            len(matches),
            name,
            ", ".join(item.id for item in matches),
        )
    return matches[0] if matches else None


def detect_drift(instance: AuraInstance, remote: InstanceData) -> list[str]:
    """Names of the declared fields that differ from the remote instance.

    An empty ``spec.memory`` expresses no preference and is not compared.
    """

    drifted = []
    if instance.spec.memory and instance.spec.memory != remote.memory:
        drifted.append("memory")
    if instance.spec.vector_optimized != bool(remote.vector_optimized):
        drifted.append("vectorOptimized")
    if instance.spec.graph_analytics_plugin != bool(remote.graph_analytics_plugin):
        drifted.append("graphAnalyticsPlugin")
    return drifted


class AuraInstanceReconciler:
    def __init__(self, secrets: SecretStore, events: Optional[EventRecorder] = None) -> None:
        self._secrets = secrets
        self._events = events or LoggingEventRecorder()

    def reconcile(self, instance: AuraInstance, gateway: InstanceGateway) -> ReconcileResult:
        if instance.status.instance_id:
            return self._reconcile_bound(instance, gateway)
        return self._reconcile_unbound(instance, gateway)

    # Bound: status.instanceId is known ---------------------------------

    def _reconcile_bound(self, instance: AuraInstance, gateway: InstanceGateway) -> ReconcileResult:
        found, remote = gateway.get_instance(instance.status.instance_id)
        if not found or remote is None:
            logger.info(
                "Aura instance '%s' for '%s' no longer exists; releasing binding",
                instance.status.instance_id,
                instance.key,
            )
            self._delete_connection_secret(instance)
            instance.status.instance_id = ""
            instance.status.connection_secret = ""
            return ReconcileResult(requeue=True)

        instance.status.instance_status = remote.status

        if remote.is_running:
            clear_reconciling(instance)
            mark_ready(instance, CONDITION_TRUE, "InstanceRunning", "Instance is running")
        elif remote.is_creating:
            mark_reconciling(instance, "InstanceCreating", "Instance is being created")
            return ReconcileResult(requeue_after=PROVISIONING_REQUEUE_DELAY)
        else:
            mark_ready(instance, CONDITION_FALSE, "InstanceNotReady", f"Instance status: {remote.status}")

        drifted = detect_drift(instance, remote)
        if drifted:
            logger.info("Updating Aura instance '%s' for '%s' (%s)", remote.id, instance.key, ", ".join(drifted))
            mark_reconciling(instance, "UpdatingInstance", "Updating Aura instance")
            gateway.patch_instance(
                instance.status.instance_id,
                PatchInstanceRequest(
                    memory=instance.spec.memory,
                    vector_optimized=instance.spec.vector_optimized,
                    graph_analytics_plugin=instance.spec.graph_analytics_plugin,
                ),
            )

        return ReconcileResult()

    def _delete_connection_secret(self, instance: AuraInstance) -> None:
        name = instance.connection_secret_name
        namespace = instance.metadata.namespace
        try:
            secret = self._secrets.get(namespace, name)
        except NotFoundError:
            return
        except AuraControllerError as exc:
            raise AuraControllerError(f"failed to get secret: {exc}") from exc

        if secret.owner_references:
            owner_uid = secret.owner_references[0].uid
            if owner_uid != instance.metadata.uid:
                raise OwnershipMismatchError(owner_uid)

        try:
            self._secrets.delete(namespace, name)
        except NotFoundError:
            return
        except AuraControllerError as exc:
            raise AuraControllerError(f"failed to delete secret: {exc}") from exc
        logger.info("Deleted connection secret '%s/%s'", namespace, name)

    # Unbound: adopt by name or create ----------------------------------

    def _reconcile_unbound(self, instance: AuraInstance, gateway: InstanceGateway) -> ReconcileResult:
        existing = find_instance_by_name(gateway.list_instances(instance.spec.tenant_id), instance.metadata.name)
        if existing is not None:
            logger.info("Adopting existing Aura instance '%s' for '%s'", existing.id, instance.key)
            instance.status.instance_id = existing.id
            return ReconcileResult(requeue=True)

        logger.info("Creating new Aura instance for '%s'", instance.key)
        mark_reconciling(instance, "CreatingInstance", "Creating new Aura instance")

        spec = instance.spec
        created = gateway.create_instance(
            CreateInstanceRequest(
                name=instance.metadata.name,
                tenant_id=spec.tenant_id,
                cloud_provider=spec.cloud_provider,
                region=spec.region,
                type=spec.tier,
                version=spec.neo4j_version,
                memory=spec.memory,
                vector_optimized=spec.vector_optimized,
                graph_analytics_plugin=spec.graph_analytics_plugin,
            )
        )

        instance.status.instance_id = created.id
        instance.status.connection_secret = instance.connection_secret_name

        secret = connection_secret_for(instance, created.username, created.password, created.connection_url)
        try:
            self._secrets.create(secret)
        except AuraControllerError as exc:
            # the next pass re-discovers the instance by name and adopts it
            instance.status.instance_id = ""
            instance.status.connection_secret = ""
            raise CreateFollowupFailedError(f"failed to create connection secret: {exc}") from exc

        self._events.event(instance, "Normal", "InstanceCreated", f'Created aura instance "{created.id}"')
        return ReconcileResult(requeue_after=PROVISIONING_REQUEUE_DELAY)
