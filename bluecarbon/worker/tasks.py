"""ARQ job definitions."""

import uuid
from typing import Any

from arq.connections import RedisSettings

from bluecarbon.core.config import get_settings
from bluecarbon.core.logging import get_logger
from bluecarbon.db.init import init_db
from bluecarbon.models.failed_job import FailedJob
from bluecarbon.services import ledger as ledger_service
from bluecarbon.services import reports as reports_service
from bluecarbon.services import stats as stats_service
from bluecarbon.services import verification as verification_service

log = get_logger(__name__)


async def _run_with_dlq(job_name: str, job_id: str | None, args: list[Any], coro) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        fid = job_id or str(uuid.uuid4())
        await FailedJob(job_name=job_name, job_id=fid, args=args, reason=str(e)[:2000]).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


def _job_id(ctx: dict[str, Any]) -> str | None:
    return ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None


async def retry_pending_scoring(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: rescore reports stuck in pending_scoring."""
    return await _run_with_dlq(
        "retry_pending_scoring",
        _job_id(ctx),
        [],
        reports_service.retry_pending_scoring(),
    )


async def reconcile_ledger(ctx: dict[str, Any]) -> dict[str, Any]:
    """Cron job: finish missing mints, release settled balance references, repair the counters."""

    async def _run() -> dict[str, Any]:
        minted = await verification_service.reconcile_approved_reports()
        released = await ledger_service.release_settled_references()
        counters = await stats_service.recompute_counters()
        log.info("ledger_reconciled", minted=minted, released_refs=released, **counters)
        return {"minted": minted, "released_refs": released, "counters": counters}

    return await _run_with_dlq("reconcile_ledger", _job_id(ctx), [], _run())


async def startup(ctx: dict) -> None:
    await init_db()


async def shutdown(ctx: dict) -> None:
    pass


def get_redis_settings() -> RedisSettings:
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/") or 0) if u.path else 0,
    )
