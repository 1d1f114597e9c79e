"""Per-record entry point invoked by the dispatcher."""
from __future__ import annotations

import copy
import logging
import time
from typing import Callable, Optional

import requests

from .aura import AuraClient
from .auth import build_client
from .conditions import mark_ready
from .config import AuraConfig
from .credentials import CredentialResolver
from .errors import AuraControllerError, NotFoundError, TransportFailureError
from .http import new_session
from .models import CONDITION_FALSE, AuraInstance
from .reconciler import AuraInstanceReconciler, InstanceGateway, ReconcileResult
from .state import EventRecorder, LoggingEventRecorder, RecordStore, SecretStore
from .status import StatusProjector

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[AuraInstance], InstanceGateway]


class AuraInstanceController:
    """Runs one reconciliation pass for a record and persists its status."""

    def __init__(
        self,
        records: RecordStore,
        secrets: SecretStore,
        config: Optional[AuraConfig] = None,
        events: Optional[EventRecorder] = None,
        gateway_factory: Optional[GatewayFactory] = None,
        session_factory: Callable[[], requests.Session] = new_session,
    ) -> None:
        self._records = records
        self._config = config or AuraConfig()
        self._events = events or LoggingEventRecorder()
        self._resolver = CredentialResolver(secrets)
        self._engine = AuraInstanceReconciler(secrets, self._events)
        self._projector = StatusProjector(records)
        self._session_factory = session_factory
        self._base_session: Optional[requests.Session] = None
        self._gateway_factory = gateway_factory or self._default_gateway

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            instance = self._records.get(namespace, name)
        except NotFoundError:
            logger.debug("Aura instance '%s/%s' is gone; nothing to do", namespace, name)
            return ReconcileResult()

        if instance.spec.suspend:
            logger.info("Aura instance '%s' is suspended", instance.key)
            return ReconcileResult()

        logger.info("Reconciling aura instance '%s'", instance.key)
        working = copy.deepcopy(instance)
        result = ReconcileResult()
        error: Optional[Exception] = None
        try:
            result = self._engine.reconcile(working, self._gateway_factory(working))
        except (AuraControllerError, requests.RequestException) as exc:
            error = exc
        except Exception as exc:  # noqa: BLE001 - every pass failure must reach the record status
            logger.exception("Unexpected error while reconciling '%s'", instance.key)
            error = exc

        working.status.observed_generation = working.metadata.generation

        if error is not None:
            logger.error("Reconcile of '%s' failed: %s", instance.key, error)
            mark_ready(working, CONDITION_FALSE, "ReconciliationFailed", str(error))
            self._events.event(working, "Warning", "ReconciliationFailed", str(error))

        try:
            self._projector.patch_status(working)
        except Exception as exc:  # noqa: BLE001 - surfaced to the dispatcher as a failed pass
            logger.error("Unable to update status of '%s' after reconciliation: %s", instance.key, exc)
            return ReconcileResult(requeue=True, error=error or exc)

        if error is not None:
            return ReconcileResult(error=error)

        interval = working.spec.interval
        if interval is not None and not result.requeue and result.requeue_after is None:
            result.requeue_after = interval
        return result

    def _default_gateway(self, instance: AuraInstance) -> AuraClient:
        timeout = instance.spec.timeout or self._config.timeout
        seconds = timeout.total_seconds()
        if seconds <= 0:
            raise TransportFailureError(f"invalid timeout {timeout} for '{instance.key}'")
        # one deadline bounds the token exchange and every Aura call of the pass
        deadline = time.monotonic() + seconds
        credentials = self._resolver.resolve(instance)
        if self._base_session is None:
            self._base_session = self._session_factory()
        session = build_client(
            credentials.client_id,
            credentials.client_secret,
            self._config.token_url,
            self._base_session,
            timeout=seconds,
            deadline=deadline,
        )
        return AuraClient(
            session,
            base_url=self._config.base_url,
            timeout=seconds,
            deadline=deadline,
        )
