"""
Lending Sweeps Scheduler
Periodic overdue marking and expiry of stale pickups
"""

import logging
import time
from typing import Optional

import schedule

from .domain.services import LendingEngine
from .infrastructure.config import SchedulerConfig, get_config
from .infrastructure.logging_config import setup_logging

logger = logging.getLogger(__name__)


def run_overdue_job(engine: LendingEngine) -> None:
    """Wrapper so a failing sweep does not stop the scheduler loop"""
    try:
        changed = engine.run_overdue_sweep()
        logger.info(f"Overdue sweep done: {changed} borrowing(s) marked overdue")
    except Exception as e:
        logger.error(f"Overdue sweep failed: {e}", exc_info=True)


def run_pickup_job(engine: LendingEngine) -> None:
    try:
        expired = engine.run_pickup_sweep()
        logger.info(f"Pickup sweep done: {len(expired)} reservation(s) expired")
    except Exception as e:
        logger.error(f"Pickup sweep failed: {e}", exc_info=True)


def schedule_sweeps(engine: LendingEngine, config: Optional[SchedulerConfig] = None,
                    scheduler: Optional[schedule.Scheduler] = None) -> schedule.Scheduler:
    """Register both sweeps on a scheduler and return it"""
    config = config or SchedulerConfig()
    scheduler = scheduler or schedule.Scheduler()

    scheduler.every(config.overdue_sweep_minutes).minutes.do(run_overdue_job, engine)
    scheduler.every(config.pickup_sweep_minutes).minutes.do(run_pickup_job, engine)
    logger.info(
        f"📅 Sweeps scheduled: overdue every {config.overdue_sweep_minutes} min, "
        f"pickups every {config.pickup_sweep_minutes} min"
    )
    return scheduler


def run_scheduler() -> None:
    """Run sweeps forever"""
    config = get_config()
    setup_logging(config.logging)
    engine = LendingEngine.from_config(config)
    scheduler = schedule_sweeps(engine, config.scheduler)

    logger.info("⏰ Lending scheduler started")
    while True:
        scheduler.run_pending()
        time.sleep(30)


if __name__ == "__main__":
    run_scheduler()
