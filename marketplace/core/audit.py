"""Append-only audit trail of money movements and approval decisions.

Rows carry the request id bound by the request middleware, so an entry can be
matched to the request log line that produced it.
"""

from typing import Any

from marketplace.core.logging import current_request_id
from marketplace.models.audit_log import AuditLog


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    session=None,
) -> None:
    """Write inside the caller's transaction when a session is given."""
    await AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        metadata=metadata or {},
        request_id=current_request_id(),
    ).insert(session=session)


async def list_events(
    entity_type: str | None = None,
    entity_id: str | None = None,
    user_id: str | None = None,
    event_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    filters = []
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if entity_id:
        filters.append(AuditLog.entity_id == entity_id)
    if user_id:
        filters.append(AuditLog.user_id == user_id)
    if event_type:
        filters.append(AuditLog.event_type == event_type)
    total = await AuditLog.find(*filters).count()
    items = await AuditLog.find(*filters).sort(-AuditLog.created_at).skip(offset).limit(limit).to_list()
    return items, total


def event_to_dict(entry: AuditLog) -> dict:
    return {
        "id": str(entry.id),
        "user_id": entry.user_id,
        "event_type": entry.event_type,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "metadata": entry.metadata,
        "request_id": entry.request_id,
        "created_at": entry.created_at.isoformat(),
    }
