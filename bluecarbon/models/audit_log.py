from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    """Append-only trail of decisions, payments, retirements and security events."""
    user_id: str | None = None  # None for gateway/system events
    event_type: str  # report_approved, payment_completed, webhook_signature_invalid, ...
    entity_type: str  # report, credit_batch, payment_order, retirement, webhook
    entity_id: str | None = None
    request_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("entity_type", 1), ("entity_id", 1)],
            [("event_type", 1), ("created_at", -1)],
        ]
