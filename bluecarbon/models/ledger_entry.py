from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field


class LedgerEntry(Document):
    """Journal row written after a balance mutation was applied."""
    buyer_id: str
    amount: int  # positive = credit, negative = debit
    balance_after: int
    reason: Literal["purchase", "retirement"]
    reference: str | None = None  # order:<id>, retirement:<key>
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_ledger"
        indexes = [
            [("buyer_id", 1), ("created_at", -1)],
            [("reference", 1)],
        ]
