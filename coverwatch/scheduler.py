"""Background scheduler — renewal escalation on a fixed tick.

Each tick:
  - Runs every org's due renewal schedules (alerts + email planning)
  - Drains a batch of the renewal email queue

A failing tick is logged and the loop keeps going.
"""

import asyncio
from datetime import datetime, timezone

from loguru import logger

from .config import settings


async def start_scheduler():
    """Launch the background scheduler loop. Call once on process startup."""
    logger.info(
        "Renewal scheduler started — tick every {} min", settings.renewal_tick_interval_minutes
    )

    # Let the process finish booting before the first tick
    await asyncio.sleep(10)

    while True:
        try:
            await _scheduler_tick()
        except Exception as e:
            logger.error("Scheduler tick error: {}", e)
        await asyncio.sleep(settings.renewal_tick_interval_minutes * 60)


async def _scheduler_tick(now: datetime | None = None):
    """Run due renewals for every org, then send queued emails."""
    from .database import SessionLocal
    from .services.email_queue import process_renewal_email_queue
    from .services.renewal_email_planner import AutoEmailPlanner
    from .services.renewal_service import run_renewals_for_all_orgs

    db = SessionLocal()
    try:
        now = now or datetime.now(timezone.utc)

        # ── Renewal escalation ──
        try:
            results = await run_renewals_for_all_orgs(db, AutoEmailPlanner(), now)
            triggered = sum(r["triggered"] for r in results)
            failed = sum(r["failed"] for r in results)
            if triggered or failed:
                logger.info(
                    "Renewal tick: {} org(s), {} triggered, {} failed", len(results), triggered, failed
                )
        except Exception as e:
            logger.error("Renewal run error: {}", e)
            db.rollback()

        # ── Email queue ──
        try:
            sent = await process_renewal_email_queue(db)
            if sent:
                logger.info("Renewal email queue: {} row(s) processed", len(sent))
        except Exception as e:
            logger.error("Renewal email queue error: {}", e)
            db.rollback()
    finally:
        db.close()
