"""Cooperative cancellation shared by every pipeline stage."""

import signal
import threading

from loguru import logger

from geo_updater.errors import PipelineCancelledError


class CancellationToken:
    """Thin wrapper over threading.Event checked at stage boundaries and before blocking calls."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelledError("Pipeline run was cancelled")

    def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)


def install_signal_handlers(token: CancellationToken) -> None:
    """Cancel `token` on SIGINT/SIGTERM."""

    def handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling after current step...")
        token.cancel()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)
