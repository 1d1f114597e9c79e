"""Persist computed status onto the record's status sub-resource."""
from __future__ import annotations

import logging
from typing import Any, Dict

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ConflictError
from .models import AuraInstance, AuraInstanceStatus
from .state import RecordStore

logger = logging.getLogger(__name__)


def status_merge_patch(current: AuraInstanceStatus, desired: AuraInstanceStatus) -> Dict[str, Any]:
    """Merge patch turning ``current`` into ``desired``.

    Conditions are replaced as a whole list; cleared fields become ``None``.
    """

    before = current.to_dict()
    after = desired.to_dict()
    patch: Dict[str, Any] = {key: value for key, value in after.items() if before.get(key) != value}
    for key in before:
        if key not in after:
            patch[key] = None
    return patch


class StatusProjector:
    """Read-latest, diff, write-with-precondition against the record store."""

    def __init__(self, records: RecordStore) -> None:
        self._records = records

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type(ConflictError),
        reraise=True,
    )
    def patch_status(self, instance: AuraInstance) -> bool:
        """Write ``instance.status``; returns False when nothing changed."""

        namespace, name = instance.metadata.namespace, instance.metadata.name
        latest = self._records.get(namespace, name)
        patch = status_merge_patch(latest.status, instance.status)
        if not patch:
            logger.debug("Status of '%s' unchanged", instance.key)
            return False
        try:
            self._records.patch_status(namespace, name, patch, latest.metadata.resource_version)
        except ConflictError:
            logger.info("Status patch for '%s' conflicted; retrying against latest version", instance.key)
            raise
        return True
