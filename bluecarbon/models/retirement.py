from datetime import datetime

import pymongo
from beanie import Document
from pydantic import Field
from pymongo import IndexModel


class Retirement(Document):
    """Permanent consumption of credits. Never updated after insert."""
    buyer_id: str
    amount: int
    reason: str
    idempotency_key: str
    anchor_receipt: str | None = None
    retired_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_retirements"
        indexes = [
            IndexModel(
                [("buyer_id", pymongo.ASCENDING), ("idempotency_key", pymongo.ASCENDING)],
                unique=True,
            ),
            [("buyer_id", 1), ("retired_at", -1)],
        ]
