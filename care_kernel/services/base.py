"""
BaseService -- abstract base for kernel services.

Kernel services receive a SQLAlchemy ``Session`` from the caller and use
``session.flush()`` only.  The caller (a module service, the API request
scope or a test) owns commit and rollback, so kernel writes join whatever
transaction is already open.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from care_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Abstract base class for flush-only kernel services."""

    def __init__(self, session: Session):
        self.session = session
