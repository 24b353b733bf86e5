"""Scheduler worker configuration.

Run with: arq ascend.workers.settings.WorkerSettings

Streaks are swept just after midnight UTC, once the previous day is closed.
Subscription sweeps run hourly, so a cancelled plan loses its tier at most
an hour after its paid period ends. The ledger audit runs in the quiet
hours because it walks every account.
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from ascend.config import get_settings
from ascend.workers.scheduler import (
    run_ledger_audit,
    run_streak_sweep,
    run_subscription_sweeps,
    shutdown,
    startup,
)


class WorkerSettings:
    functions = [run_streak_sweep, run_subscription_sweeps, run_ledger_audit]
    cron_jobs = [
        cron(run_streak_sweep, hour={0}, minute={5}),
        cron(run_subscription_sweeps, minute={15}),
        cron(run_ledger_audit, hour={3}, minute={30}),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url or "redis://localhost:6379/0")
    # Sweeps take account locks; more parallelism only adds contention.
    max_jobs = 4
