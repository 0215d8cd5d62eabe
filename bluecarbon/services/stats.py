"""Registry-wide counters (atomic $inc) and the public statistics view."""

from datetime import datetime

from pymongo.errors import DuplicateKeyError

from bluecarbon.core.logging import get_logger
from bluecarbon.models.counter import CREDITS_ISSUED, CREDITS_RETIRED, Counter
from bluecarbon.models.credit_batch import CreditBatch
from bluecarbon.models.project import Project, ProjectStatus
from bluecarbon.models.retirement import Retirement

log = get_logger(__name__)


async def increment(name: str, amount: int) -> None:
    """Single-document $inc; safe under concurrent callers."""
    if amount == 0:
        return
    collection = Counter.get_motor_collection()
    update = {"$inc": {"value": amount}, "$set": {"updated_at": datetime.utcnow()}}
    try:
        await collection.update_one({"name": name}, update, upsert=True)
    except DuplicateKeyError:
        # Lost the race to create the counter; it exists now.
        await collection.update_one({"name": name}, update)


async def get_counter(name: str) -> int:
    counter = await Counter.find_one(Counter.name == name)
    return counter.value if counter else 0


async def recompute_counters() -> dict[str, int]:
    """Derive the counters from batches and retirements and overwrite them."""
    issued = await CreditBatch.find({"anchor_receipt": {"$ne": None}}).sum(CreditBatch.total_amount) or 0
    retired = await Retirement.find_all().sum(Retirement.amount) or 0
    values = {CREDITS_ISSUED: int(issued), CREDITS_RETIRED: int(retired)}
    collection = Counter.get_motor_collection()
    for name, value in values.items():
        current = await get_counter(name)
        if current != value:
            log.warning("counter_drift_repaired", counter=name, stored=current, derived=value)
        await collection.update_one(
            {"name": name},
            {"$set": {"value": value, "updated_at": datetime.utcnow()}},
            upsert=True,
        )
    return values


async def public_stats() -> dict:
    approved = await Project.find(Project.status == ProjectStatus.APPROVED).sort(-Project.created_at).to_list()
    return {
        "total_credits_issued": await get_counter(CREDITS_ISSUED),
        "total_credits_retired": await get_counter(CREDITS_RETIRED),
        "total_projects": await Project.find_all().count(),
        "projects": [
            {
                "id": str(p.id),
                "name": p.name,
                "location": p.location,
                "ecosystem_type": p.ecosystem_type.value,
                "area": p.area,
            }
            for p in approved
        ],
    }
