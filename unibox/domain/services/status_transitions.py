"""
Delivery status transition rules.

Status callbacks arrive unordered and duplicated. Each transition records the
arriving status's own timestamp (last write wins per field) while the
``status`` column only moves forward: ``sending < sent < delivered < read``,
with ``failed`` reachable from any non-terminal state and terminal once set.
"""

from datetime import datetime
from typing import Any

from unibox.schemas.core.types import STATUS_TIMESTAMP_FIELDS, MessageDeliveryStatus


def plan_status_transition(
    current: MessageDeliveryStatus,
    new_status: MessageDeliveryStatus,
    at: datetime,
    error_message: str | None = None,
) -> dict[str, Any]:
    """
    Compute the column changes for applying ``new_status`` to a message.

    Returns:
        Field -> value changes; empty when the callback must be ignored
    """
    current = MessageDeliveryStatus(current)
    new_status = MessageDeliveryStatus(new_status)

    if new_status == MessageDeliveryStatus.FAILED:
        # A message already read was delivered; a late failure is stale
        if current == MessageDeliveryStatus.READ:
            return {}
        return {
            "status": MessageDeliveryStatus.FAILED,
            "failed_at": at,
            "error_message": error_message,
        }

    changes: dict[str, Any] = {}
    timestamp_field = STATUS_TIMESTAMP_FIELDS.get(new_status)
    if timestamp_field:
        changes[timestamp_field] = at

    if current != MessageDeliveryStatus.FAILED and new_status.rank > current.rank:
        changes["status"] = new_status

    return changes


def apply_status_changes(record: Any, changes: dict[str, Any]) -> bool:
    """Set ``changes`` on ``record``; return True when anything differed."""
    changed = False
    for field, value in changes.items():
        if getattr(record, field) != value:
            setattr(record, field, value)
            changed = True
    return changed
