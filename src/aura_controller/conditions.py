"""Helpers for the standard status condition list."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from .models import (
    CONDITION_READY,
    CONDITION_RECONCILING,
    CONDITION_TRUE,
    AuraInstance,
    Condition,
    utcnow,
)


def get_condition(conditions: List[Condition], condition_type: str) -> Optional[Condition]:
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(
    conditions: List[Condition],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    generation: int,
    now: Optional[datetime] = None,
) -> Condition:
    """Insert or update a condition in place.

    ``last_transition_time`` only moves when the status value flips; reason,
    message and generation are always overwritten.
    """

    existing = get_condition(conditions, condition_type)
    if existing is None:
        condition = Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            observed_generation=generation,
            last_transition_time=now or utcnow(),
        )
        conditions.append(condition)
        return condition

    if existing.status != status:
        existing.last_transition_time = now or utcnow()
    existing.status = status
    existing.reason = reason
    existing.message = message
    existing.observed_generation = generation
    return existing


def delete_condition(conditions: List[Condition], condition_type: str) -> bool:
    for index, condition in enumerate(conditions):
        if condition.type == condition_type:
            del conditions[index]
            return True
    return False


def mark_ready(instance: AuraInstance, status: str, reason: str, message: str) -> Condition:
    return set_condition(
        instance.status.conditions,
        CONDITION_READY,
        status,
        reason,
        message,
        instance.metadata.generation,
    )


def mark_reconciling(instance: AuraInstance, reason: str, message: str) -> Condition:
    return set_condition(
        instance.status.conditions,
        CONDITION_RECONCILING,
        CONDITION_TRUE,
        reason,
        message,
        instance.metadata.generation,
    )


def clear_reconciling(instance: AuraInstance) -> bool:
    return delete_condition(instance.status.conditions, CONDITION_RECONCILING)


def is_ready(instance: AuraInstance) -> bool:
    condition = get_condition(instance.status.conditions, CONDITION_READY)
    return condition is not None and condition.status == CONDITION_TRUE
