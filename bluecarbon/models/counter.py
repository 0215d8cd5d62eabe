from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

CREDITS_ISSUED = "credits_issued"
CREDITS_RETIRED = "credits_retired"


class Counter(Document):
    """Registry-wide totals; only ever changed with $inc or a full recompute."""
    name: Indexed(str, unique=True)
    value: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "counters"
