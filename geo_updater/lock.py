"""
Cluster-wide exclusivity for pipeline runs via a PostgreSQL advisory lock.

The lock is session-scoped and held on a dedicated connection. If the
process dies, Postgres drops the session and the lock with it, so a crashed
holder can never leave the lock stuck.
"""

import hashlib
from enum import Enum

from loguru import logger
from sqlalchemy import text
from tenacity import Retrying, retry_if_result, stop_after_delay, stop_any, wait_fixed

from geo_updater.config import settings
from geo_updater.database import engine as default_engine
from geo_updater.errors import LockUnavailableError
from geo_updater.utils.cancellation import CancellationToken


class LockState(str, Enum):
    IDLE = "idle"
    LOCK_REQUESTED = "lock_requested"
    ACQUIRED = "acquired"
    RUNNING = "running"
    RELEASED = "released"
    TIMED_OUT = "timed_out"


def lock_key(name: str) -> int:
    """Stable signed 64-bit key for pg_advisory_lock(bigint)."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class ExclusivityCoordinator:
    """
    Guards a pipeline run with pg_try_advisory_lock, polled up to a timeout.

    Usage:
        with ExclusivityCoordinator() as lock:
            ...  # only one process in the deployment gets here

    Raises LockUnavailableError from __enter__ if the wait times out.
    """

    def __init__(
        self,
        engine=None,
        lock_name: str | None = None,
        timeout: float | None = None,
        poll_interval: float | None = None,
        cancel: CancellationToken | None = None,
    ):
        self.engine = engine or default_engine
        self.lock_name = lock_name or settings.pipeline.lock_name
        self.timeout = timeout if timeout is not None else settings.pipeline.lock_timeout_seconds
        self.poll_interval = poll_interval if poll_interval is not None else settings.pipeline.lock_poll_interval
        self.cancel = cancel or CancellationToken()
        self.key = lock_key(self.lock_name)
        self.state = LockState.IDLE
        self._connection = None

    def _try_lock(self) -> bool:
        return bool(self._connection.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": self.key}
        ).scalar())

    def acquire(self) -> bool:
        """
        Try to take the lock, waiting up to `timeout` seconds.

        Returns:
            True if acquired, False if another process still holds it

        Raises:
            PipelineCancelledError: cancelled while waiting
        """
        if self.state in (LockState.ACQUIRED, LockState.RUNNING):
            return True

        self.state = LockState.LOCK_REQUESTED
        logger.info(f"Requesting advisory lock '{self.lock_name}' (key={self.key}, timeout={self.timeout:.0f}s)")

        self._connection = self.engine.connect().execution_options(isolation_level="AUTOCOMMIT")

        retrying = Retrying(
            stop=stop_any(stop_after_delay(self.timeout), lambda retry_state: self.cancel.cancelled),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda acquired: not acquired),
            retry_error_callback=lambda retry_state: False,
        )

        try:
            acquired = retrying(self._try_lock)
        except Exception:
            self._close()
            self.state = LockState.IDLE
            raise

        if not acquired and self.cancel.cancelled:
            self._close()
            self.state = LockState.IDLE
            logger.warning(f"Cancelled while waiting for advisory lock '{self.lock_name}'")
            self.cancel.raise_if_cancelled()

        if not acquired:
            self._close()
            self.state = LockState.TIMED_OUT
            logger.warning(f"Advisory lock '{self.lock_name}' is held by another process; another update is running")
            return False

        self.state = LockState.ACQUIRED
        logger.info(f"Acquired advisory lock '{self.lock_name}'")
        return True

    def mark_running(self) -> None:
        if self.state != LockState.ACQUIRED:
            raise RuntimeError(f"Cannot start running from state {self.state.value}")
        self.state = LockState.RUNNING

    def release(self) -> None:
        """Release the lock if held. Safe to call more than once."""
        if self._connection is None:
            return

        try:
            if self.state in (LockState.ACQUIRED, LockState.RUNNING):
                released = self._connection.execute(
                    text("SELECT pg_advisory_unlock(:key)"), {"key": self.key}
                ).scalar()
                if released:
                    logger.info(f"Released advisory lock '{self.lock_name}'")
                else:
                    logger.warning(f"Advisory lock '{self.lock_name}' was not held at release")
        except Exception:
            # Dropping the DBAPI connection ends the session and its locks
            self._connection.invalidate()
            raise
        finally:
            self._close()
            self.state = LockState.RELEASED

    def _close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        if not self.acquire():
            raise LockUnavailableError(f"Lock '{self.lock_name}' held by another process")
        self.mark_running()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
