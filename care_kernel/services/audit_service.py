"""
AuditQueue / AuditService -- queued, batched audit trail.

Contract:
    ``AuditService.record()`` captures one audited mutation as an immutable
    ``AuditEvent`` DTO.  With a queue attached the event is enqueued in
    memory and written later in a batch; without one it is added to the
    caller's session and commits with the caller's transaction.

    ``AuditQueue`` drains the in-memory deque from a polling background
    thread.  A failed batch insert is pushed back to the front of the queue
    in its original order and retried on the next tick.

Architecture: care_kernel/services.  The polling loop follows the batch
    scheduler pattern: ``tick``-style ``drain_once()`` public for tests,
    ``start()`` / ``stop()`` around a daemon thread and a stop Event.

Invariants enforced:
    - Events are never dropped: a failed batch is re-queued whole.
    - Queue order is preserved across re-queues.
    - ``stop(flush=True)`` drains everything still queued before returning.
    - All timestamps come from the injected Clock.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.logging_config import LogContext, get_logger
from care_kernel.models.audit_event import AuditEventModel

logger = get_logger("services.audit")


@dataclass(frozen=True)
class AuditEvent:
    """One audited mutation."""

    action: str
    entity_type: str
    entity_id: str | None
    occurred_at: datetime
    tenant_id: UUID | None = None
    actor_id: UUID | None = None
    correlation_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)

    def to_model(self) -> AuditEventModel:
        return AuditEventModel(
            id=self.id,
            tenant_id=self.tenant_id,
            actor_id=self.actor_id,
            action=self.action,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            correlation_id=self.correlation_id,
            details=dict(self.details),
            occurred_at=self.occurred_at,
        )

    @classmethod
    def from_model(cls, model: AuditEventModel) -> "AuditEvent":
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            actor_id=model.actor_id,
            action=model.action,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            correlation_id=model.correlation_id,
            details=dict(model.details or {}),
            occurred_at=model.occurred_at,
        )


class AuditQueue:
    """In-memory audit queue drained in batches by a polling thread.

    Contract:
        - ``enqueue()`` is thread-safe and never blocks on I/O.
        - ``drain_once()`` writes at most ``batch_size`` events in one
          transaction and returns how many were written (0 on failure).
        - ``start()`` / ``stop()`` for background operation.
        - ``last_flush_at`` and ``oldest_pending_seconds()`` read the
          injected Clock.

    Non-goals:
        - NOT durable across process crashes (events queued in memory are
          lost if the process dies before a drain).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        batch_size: int = 50,
        flush_interval: float = 1.0,
        clock: Clock | None = None,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._session_factory = session_factory
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._clock = clock or SystemClock()
        self.last_flush_at: datetime | None = None
        self._queue: deque[AuditEvent] = deque()
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def enqueue(self, event: AuditEvent) -> None:
        with self._lock:
            self._queue.append(event)

    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def oldest_pending_seconds(self) -> float:
        """How long the oldest queued event has waited, by the queue's clock."""
        with self._lock:
            if not self._queue:
                return 0.0
            oldest = self._queue[0].occurred_at
        return max((self._clock.now() - oldest).total_seconds(), 0.0)

    def drain_once(self) -> int:
        """Write one batch.  Re-queue it at the front on failure."""
        with self._lock:
            batch = [
                self._queue.popleft()
                for _ in range(min(self._batch_size, len(self._queue)))
            ]
        if not batch:
            return 0

        session = self._session_factory()
        try:
            session.add_all([event.to_model() for event in batch])
            session.commit()
            self.last_flush_at = self._clock.now()
            logger.debug(
                "audit_batch_written",
                extra={
                    "count": len(batch),
                    "lag_seconds": (self.last_flush_at - batch[0].occurred_at).total_seconds(),
                },
            )
            return len(batch)
        except Exception:
            session.rollback()
            with self._lock:
                self._queue.extendleft(reversed(batch))
            logger.exception(
                "audit_batch_requeued",
                extra={"count": len(batch), "pending": len(self._queue)},
            )
            return 0
        finally:
            session.close()

    def flush(self) -> int:
        """Drain until empty or a batch fails.  Returns events written."""
        written = 0
        while self.pending():
            count = self.drain_once()
            if count == 0:
                break
            written += count
        return written

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="audit-queue",
            daemon=True,
        )
        self._thread.start()
        logger.info("audit_queue_started", extra={"flush_interval": self._flush_interval})

    def stop(self, flush: bool = True, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        if flush:
            self.flush()
        logger.info("audit_queue_stopped", extra={"pending": self.pending()})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.flush()
            except Exception:
                logger.exception("audit_queue_tick_exception")
            self._stop_event.wait(timeout=self._flush_interval)


class AuditService:
    """
    Records audit events, through a queue when one is configured.

    Guarantees:
        - ``record()`` returns the event it captured.
        - correlation_id defaults to the current LogContext correlation or
          request id.
    """

    def __init__(
        self,
        session: Session,
        queue: AuditQueue | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self._queue = queue
        self._clock = clock or SystemClock()

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any = None,
        tenant_id: UUID | None = None,
        actor_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            occurred_at=self._clock.now(),
            tenant_id=tenant_id,
            actor_id=actor_id,
            correlation_id=LogContext.get("correlation_id") or LogContext.get("request_id"),
            details=details or {},
        )
        if self._queue is not None:
            self._queue.enqueue(event)
        else:
            self.session.add(event.to_model())
            self.session.flush()
        logger.info(
            "audit_event_recorded",
            extra={
                "action": action,
                "entity_type": entity_type,
                "entity_id": event.entity_id,
                "queued": self._queue is not None,
            },
        )
        return event

    def list_events(
        self,
        tenant_id: UUID,
        entity_type: str | None = None,
        entity_id: Any = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = (
            select(AuditEventModel)
            .where(AuditEventModel.tenant_id == tenant_id)
            .order_by(AuditEventModel.occurred_at.desc())
            .limit(limit)
        )
        if entity_type is not None:
            stmt = stmt.where(AuditEventModel.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(AuditEventModel.entity_id == str(entity_id))
        return [AuditEvent.from_model(m) for m in self.session.execute(stmt).scalars().all()]
