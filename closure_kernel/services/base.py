"""
BaseService -- abstract base for all kernel services.

Every service receives a SQLAlchemy ``Session`` from its caller and uses
``session.flush()`` -- never ``session.commit()``.  The caller (normally
``DailyClosureFacade`` through ``session_scope()``) owns commit and
rollback, so multi-step operations stay atomic.

Read-only queries belong in ``closure_kernel/selectors/``.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from closure_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the outer transaction.
    """

    def __init__(self, session: Session):
        self.session = session
