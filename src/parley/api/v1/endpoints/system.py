"""Operational endpoints for the lifecycle engine."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from parley.core.settings import settings

from ..dependencies import CurrentUserDep, PresenceDep, SchedulerDep, SessionDep

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_public_config(scheduler: SchedulerDep) -> dict[str, Any]:
    """Return a sanitized snapshot of runtime configuration.

    Excludes secrets and connection strings.
    """
    return {
        "app": {"name": settings.app_name, "version": settings.app_version},
        "scheduler": {
            "enabled": settings.scheduler_enabled,
            "running": scheduler.running,
            "sweep_interval_seconds": scheduler.interval,
            "timer_horizon_seconds": settings.timer_horizon_seconds,
            "armed_timers": len(scheduler.pending_timers()),
        },
    }


@router.get("/presence")
async def get_presence(presence: PresenceDep, _: CurrentUserDep) -> dict[str, Any]:
    """List the user ids that currently hold a live connection."""
    online = presence.online_user_ids()
    return {"online": online, "count": len(online)}


@router.post("/sweep")
async def run_sweep(scheduler: SchedulerDep, db: SessionDep, _: CurrentUserDep) -> dict[str, Any]:
    """Run one lifecycle sweep immediately and report what it processed."""
    report = await scheduler.sweep_once(db=db)
    return {"sent": report.sent, "expired": report.expired, "failed": report.failed}
