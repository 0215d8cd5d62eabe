"""Run ARQ worker. Usage: python -m bluecarbon.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from bluecarbon.worker.tasks import get_redis_settings, reconcile_ledger, retry_pending_scoring, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [retry_pending_scoring, reconcile_ledger]
    cron_jobs = [
        cron(retry_pending_scoring, minute={0, 10, 20, 30, 40, 50}),
        cron(reconcile_ledger, minute=5),  # hourly at :05
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    run_worker(WorkerSettings)
