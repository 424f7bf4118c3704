"""
Tests for PilotFeedbackWorker.

Validates:
- tick() drains one batch through a fresh session and commits it
- A failing tick is logged, rolled back and never raises
- start()/stop() manage the background thread
"""

import threading

from care_modules.pilot_feedback.models import ProcessingStatus, QueueRunResult, Severity
from care_modules.pilot_feedback.service import PilotFeedbackAgentService
from care_modules.pilot_feedback.worker import PilotFeedbackWorker


class RecordingSession:
    def __init__(self):
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


class CountingService:
    def __init__(self, calls: threading.Event):
        self._calls = calls

    def process_queue(self):
        self._calls.set()
        return QueueRunResult(processed=1, failed=0, tenants=1)


class TestTick:
    def test_tick_processes_queue(self, session, session_factory, deterministic_clock, tenant_id,
                                  test_actor_id):
        agent = PilotFeedbackAgentService(session, clock=deterministic_clock)
        agent.submit_feedback(tenant_id, test_actor_id, "billing", Severity.LOW,
                              "invoice layout is hard to read", consent_improvement=True)
        worker = PilotFeedbackWorker(
            session_factory,
            service_factory=lambda s: PilotFeedbackAgentService(s, clock=deterministic_clock),
        )
        result = worker.tick()
        assert (result.processed, result.failed, result.tenants) == (1, 0, 1)
        session.expire_all()
        (event,) = agent.list_feedback(tenant_id)
        assert event.processing_status == ProcessingStatus.PROCESSED

    def test_failed_tick_is_contained(self, captured_logs):
        sessions = []

        def session_factory():
            sessions.append(RecordingSession())
            return sessions[-1]

        def broken(_session):
            raise RuntimeError("database unavailable")

        worker = PilotFeedbackWorker(session_factory, service_factory=broken)
        assert worker.tick() == QueueRunResult(processed=0, failed=0, tenants=0)
        assert sessions[0].rolled_back and sessions[0].closed
        assert not sessions[0].committed
        assert any(r["message"] == "pilot_feedback_tick_failed" for r in captured_logs())

    def test_successful_tick_commits(self):
        session = RecordingSession()
        worker = PilotFeedbackWorker(lambda: session,
                                     service_factory=lambda s: CountingService(threading.Event()))
        assert worker.tick().processed == 1
        assert session.committed and session.closed


class TestLifecycle:
    def test_start_and_stop(self):
        called = threading.Event()
        worker = PilotFeedbackWorker(RecordingSession, service_factory=lambda s: CountingService(called),
                                     poll_interval_seconds=0.01)
        worker.start()
        try:
            assert called.wait(timeout=5)
            assert worker.is_running
            worker.start()
        finally:
            worker.stop(timeout=5)
        assert not worker.is_running
