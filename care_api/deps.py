"""
Shared FastAPI dependencies.

Each request gets its own session from the application's session
factory.  Services commit their own work; the session is closed when the
request finishes.
"""

from typing import Annotated, Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from care_api.auth import Principal, get_principal
from care_kernel.domain.clock import Clock, SystemClock
from care_kernel.services.audit_service import AuditService
from care_kernel.services.tenant_service import TenantService

_SYSTEM_CLOCK = SystemClock()


def get_db_session(request: Request) -> Generator[Session, None, None]:
    session = request.app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_clock() -> Clock:
    return _SYSTEM_CLOCK


def get_audit(
    request: Request,
    session: Session = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
) -> AuditService:
    return AuditService(session, queue=request.app.state.audit_queue, clock=clock)


SessionDep = Annotated[Session, Depends(get_db_session)]
ClockDep = Annotated[Clock, Depends(get_clock)]
AuditDep = Annotated[AuditService, Depends(get_audit)]
PrincipalDep = Annotated[Principal, Depends(get_principal)]


def active_tenant(
    principal: Principal = Depends(get_principal),
    session: Session = Depends(get_db_session),
) -> Principal:
    """Refuse requests for a suspended or archived tenant (admins excepted)."""
    if not principal.is_admin:
        TenantService(session).ensure_active(principal.tenant_id)
    return principal
