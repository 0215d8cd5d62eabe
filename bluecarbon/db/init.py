import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from bluecarbon.core.config import get_settings
from bluecarbon.models.audit_log import AuditLog
from bluecarbon.models.balance import Balance
from bluecarbon.models.counter import Counter
from bluecarbon.models.credit_batch import CreditBatch
from bluecarbon.models.failed_job import FailedJob
from bluecarbon.models.ledger_entry import LedgerEntry
from bluecarbon.models.payment_order import PaymentOrder
from bluecarbon.models.project import Project
from bluecarbon.models.report import Report
from bluecarbon.models.retirement import Retirement
from bluecarbon.models.user import User

DOCUMENT_MODELS = [
    User,
    Project,
    Report,
    CreditBatch,
    Balance,
    LedgerEntry,
    PaymentOrder,
    Retirement,
    Counter,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(database=None) -> None:
    """Bind document models; `database` overrides the configured Mongo database (tests)."""
    if database is None:
        settings = get_settings()
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
