"""
Queueing notifications in the business transaction.

``write_outbox_event`` only adds a row to the caller's session. The row is
committed together with the order, purchase or ledger change it describes,
and the OutboxProcessor publishes it afterwards; a rolled back operation
leaves no notification behind.
"""

import json
from typing import Any

from sqlalchemy.orm import Session

from pos_shared.config.logging import get_logger

from pos_api.models import OutboxEvent, OutboxStatus

logger = get_logger(__name__)


def write_outbox_event(
    db: Session,
    branch: str,
    event_type: str,
    aggregate_type: str,
    aggregate_id: str | int,
    payload: dict[str, Any],
) -> OutboxEvent:
    """
    Args:
        branch: Branch code; selects the channel.
        event_type: e.g. ``Events.ORDER_PAID``.
        aggregate_type: "order", "purchase", "purchase_order", "ledger_entry"...
        aggregate_id: External id of the record.
        payload: Document view of the record, stored as JSON.
    """
    row = OutboxEvent(
        branch=branch,
        event_type=event_type,
        aggregate_type=aggregate_type,
        aggregate_id=str(aggregate_id),
        payload=json.dumps(payload, default=str),
        status=OutboxStatus.PENDING,
        retry_count=0,
    )
    db.add(row)
    logger.debug("Notification queued", event_type=event_type, aggregate=f"{aggregate_type}:{aggregate_id}")
    return row
