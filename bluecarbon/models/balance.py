from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class Balance(Document):
    """tCO2e credited to a buyer and not yet retired; updated only by atomic $inc."""
    buyer_id: Indexed(str, unique=True)
    balance: int = 0
    # references of mutations whose owning order or retirement is not yet
    # released; the reconcile job pulls them once the event is recorded
    pending_refs: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_balances"
