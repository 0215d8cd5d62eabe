from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field


class Reservation(BaseModel):
    """Supply taken out of a batch by one completed sale."""
    order_id: str
    quantity: int
    reserved_at: datetime = Field(default_factory=datetime.utcnow)


class CreditBatch(Document):
    """Credits minted from one approved report. total_amount never changes after mint."""
    report_id: Indexed(PydanticObjectId, unique=True)
    project_id: PydanticObjectId
    total_amount: int = Field(ge=0)  # tCO2e
    available_amount: int = Field(ge=0)
    quality_score: float = Field(ge=0, le=1)
    evidence_reference: str = ""
    anchor_receipt: str | None = None
    reservations: list[Reservation] = Field(default_factory=list)
    minted_at: datetime = Field(default_factory=datetime.utcnow)

    def reserved_amount(self) -> int:
        return sum(r.quantity for r in self.reservations)

    def has_reservation(self, order_id: str) -> bool:
        return any(r.order_id == order_id for r in self.reservations)

    class Settings:
        name = "credit_batches"
        indexes = [
            [("available_amount", 1), ("minted_at", -1)],
            [("project_id", 1)],
        ]
