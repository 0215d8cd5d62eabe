"""Append-only audit trail for ledger decisions, payments and security events.

Records carry the request id bound by the HTTP middleware so an audit row can be
matched with the structured log lines of the request that produced it.
"""

from typing import Any

import structlog

from bluecarbon.core.logging import get_logger
from bluecarbon.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    entry = AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        request_id=request_id,
        metadata=metadata or {},
    )
    await entry.insert()
    log.info("audit_recorded", audit_event=event_type, entity_type=entity_type, entity_id=entity_id)
    return entry

