"""Tests for AuditService and the background AuditQueue."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from care_kernel.logging_config import LogContext
from care_kernel.services.audit_service import AuditEvent, AuditQueue, AuditService


def _event(tenant_id, action="RESIDENT_ADMITTED"):
    return AuditEvent(
        action=action,
        entity_type="Resident",
        entity_id=str(uuid4()),
        occurred_at=datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc),
        tenant_id=tenant_id,
    )


class TestAuditService:
    def test_direct_write_is_listed(self, session, tenant_id, test_actor_id, deterministic_clock):
        audit = AuditService(session, clock=deterministic_clock)
        audit.record("TEST_ACTION", "Thing", "t-1", tenant_id=tenant_id, actor_id=test_actor_id,
                     details={"k": "v"})
        session.commit()

        events = audit.list_events(tenant_id)
        assert [e.action for e in events] == ["TEST_ACTION"]
        assert events[0].details == {"k": "v"}

    def test_correlation_id_taken_from_log_context(self, session, tenant_id, deterministic_clock):
        LogContext.set(request_id="req-42")
        event = AuditService(session, clock=deterministic_clock).record("X", "Thing", tenant_id=tenant_id)
        assert event.correlation_id == "req-42"

    def test_queued_record_does_not_touch_session(self, session, tenant_id, session_factory):
        queue = AuditQueue(session_factory)
        AuditService(session, queue=queue).record("Y", "Thing", tenant_id=tenant_id)
        assert queue.pending() == 1
        assert AuditService(session).list_events(tenant_id) == []


class TestAuditQueue:
    def test_batch_size_must_be_positive(self, session_factory):
        with pytest.raises(ValueError):
            AuditQueue(session_factory, batch_size=0)

    def test_flush_writes_in_batches(self, session, session_factory, tenant_id):
        queue = AuditQueue(session_factory, batch_size=2)
        for _ in range(5):
            queue.enqueue(_event(tenant_id))

        assert queue.drain_once() == 2
        assert queue.flush() == 3
        assert queue.pending() == 0
        assert len(AuditService(session).list_events(tenant_id)) == 5

    def test_failed_batch_is_requeued_in_order(self, session, session_factory, tenant_id):
        broken = MagicMock()
        broken.commit.side_effect = RuntimeError("database unavailable")
        calls = iter([broken])
        queue = AuditQueue(lambda: next(calls, None) or session_factory(), batch_size=10)
        first, second = _event(tenant_id, "FIRST"), _event(tenant_id, "SECOND")
        queue.enqueue(first)
        queue.enqueue(second)

        assert queue.drain_once() == 0
        assert queue.pending() == 2
        broken.rollback.assert_called_once()

        assert queue.flush() == 2
        actions = {e.action for e in AuditService(session).list_events(tenant_id)}
        assert actions == {"FIRST", "SECOND"}

    def test_start_and_stop_flushes(self, session, session_factory, tenant_id):
        queue = AuditQueue(session_factory, flush_interval=0.01)
        queue.start()
        assert queue.is_running
        queue.enqueue(_event(tenant_id))
        queue.stop(timeout=2.0)
        assert not queue.is_running
        assert queue.pending() == 0
        assert len(AuditService(session).list_events(tenant_id)) == 1

    def test_lag_measured_with_injected_clock(self, session_factory, tenant_id, deterministic_clock):
        queue = AuditQueue(session_factory, clock=deterministic_clock)
        assert queue.oldest_pending_seconds() == 0.0
        queue.enqueue(_event(tenant_id))
        deterministic_clock.advance(timedelta(seconds=90))

        assert queue.oldest_pending_seconds() == 90.0
        assert queue.last_flush_at is None
        assert queue.drain_once() == 1
        assert queue.last_flush_at == datetime(2025, 6, 2, 9, 1, 30, tzinfo=timezone.utc)
        assert queue.oldest_pending_seconds() == 0.0

    def test_failed_batch_leaves_last_flush_unset(self, session_factory, tenant_id, deterministic_clock):
        broken = MagicMock()
        broken.commit.side_effect = RuntimeError("database unavailable")
        queue = AuditQueue(lambda: broken, clock=deterministic_clock)
        queue.enqueue(_event(tenant_id))
        assert queue.drain_once() == 0
        assert queue.last_flush_at is None
