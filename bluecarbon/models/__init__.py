from bluecarbon.models.user import User
from bluecarbon.models.project import Project
from bluecarbon.models.report import Report
from bluecarbon.models.credit_batch import CreditBatch
from bluecarbon.models.balance import Balance
from bluecarbon.models.ledger_entry import LedgerEntry
from bluecarbon.models.payment_order import PaymentOrder
from bluecarbon.models.retirement import Retirement
from bluecarbon.models.counter import Counter
from bluecarbon.models.audit_log import AuditLog
from bluecarbon.models.failed_job import FailedJob

__all__ = [
    "User",
    "Project",
    "Report",
    "CreditBatch",
    "Balance",
    "LedgerEntry",
    "PaymentOrder",
    "Retirement",
    "Counter",
    "AuditLog",
    "FailedJob",
]
