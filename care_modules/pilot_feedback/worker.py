"""
PilotFeedbackWorker -- in-process poller for the feedback queue.

Contract:
    Every ``poll_interval_seconds`` opens a session, runs one
    ``PilotFeedbackAgentService.process_queue()`` batch and closes the
    session.  The queue lives in the database, so several workers may
    run; each batch is small and committed per tenant.

Invariants enforced:
    - ``tick()`` never raises; a failed tick is logged and retried on the
      next poll.
    - ``stop()`` lets the current batch finish before returning.
"""

from __future__ import annotations

import threading
from typing import Callable

from sqlalchemy.orm import Session

from care_kernel.logging_config import get_logger
from care_modules.pilot_feedback.models import QueueRunResult
from care_modules.pilot_feedback.service import PilotFeedbackAgentService

logger = get_logger("modules.pilot_feedback.worker")


class PilotFeedbackWorker:
    """Background polling loop over the pilot feedback queue.

    Non-goals:
        - NOT a distributed work queue (no row locking between workers).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        service_factory: Callable[[Session], PilotFeedbackAgentService] = PilotFeedbackAgentService,
        poll_interval_seconds: float = 60.0,
    ):
        self._session_factory = session_factory
        self._service_factory = service_factory
        self._poll_interval = poll_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def tick(self) -> QueueRunResult:
        """Process one batch (public for testing)."""
        session = self._session_factory()
        try:
            result = self._service_factory(session).process_queue()
            session.commit()
            return result
        except Exception:
            session.rollback()
            logger.exception("pilot_feedback_tick_failed")
            return QueueRunResult(processed=0, failed=0, tenants=0)
        finally:
            session.close()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="pilot-feedback-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info("pilot_feedback_worker_started", extra={"poll_interval": self._poll_interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("pilot_feedback_worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._poll_interval)
