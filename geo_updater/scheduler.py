"""
Long-running update loop.

Checks the last_update marker periodically and triggers a full run when the
configured interval has elapsed. Lock contention between replicas is
resolved by the advisory lock inside each run.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from loguru import logger

from geo_updater.config import settings
from geo_updater.database import get_last_update, get_session
from geo_updater.orchestrator import RunResult, UpdatePipeline
from geo_updater.utils.cancellation import CancellationToken


def is_update_due(last_updated: datetime | None, interval_days: int, now: datetime | None = None) -> bool:
    """True if there was never an update or the interval has elapsed since the last one."""
    if last_updated is None:
        return True
    now = now or datetime.now(timezone.utc)
    if last_updated.tzinfo is None:
        last_updated = last_updated.replace(tzinfo=timezone.utc)
    return now - last_updated >= timedelta(days=interval_days)


def read_last_update(session_factory=None) -> datetime | None:
    with get_session(session_factory) as session:
        return get_last_update(session)


def run_forever(
    pipeline_factory: Callable[[], UpdatePipeline],
    cancel: CancellationToken,
    interval_days: int | None = None,
    update_on_start: bool | None = None,
    check_interval: float | None = None,
    last_update_reader: Callable[[], datetime | None] = read_last_update,
) -> list[RunResult]:
    """
    Run updates whenever they are due until `cancel` is set.

    Args:
        pipeline_factory: Builds a fresh pipeline per run
        cancel: Stops the loop (and any in-flight run) when set
        interval_days: Days between updates
        update_on_start: Run immediately on start regardless of last_update
        check_interval: Seconds between due-checks
        last_update_reader: Returns the current last_update timestamp

    Returns:
        Results of the runs performed, in order
    """
    interval_days = interval_days or settings.pipeline.update_interval_days
    update_on_start = settings.pipeline.update_on_start if update_on_start is None else update_on_start
    check_interval = check_interval or settings.pipeline.check_interval_seconds

    results = []
    first = True
    logger.info(f"Update scheduler started (interval={interval_days}d, check every {check_interval:.0f}s)")

    while not cancel.cancelled:
        try:
            due = (first and update_on_start) or is_update_due(last_update_reader(), interval_days)
        except Exception as e:
            logger.error(f"Could not read last_update: {e}")
            due = False
        first = False

        if due:
            logger.info("Data update is due, starting run")
            results.append(pipeline_factory().run())
        else:
            logger.debug("Data is current, no update needed")

        if cancel.wait(check_interval):
            break

    logger.info("Update scheduler stopped")
    return results
