"""
BaseService and UnitOfWork -- service infrastructure.

Responsibility:
    - BaseService: common constructor for every service.  Services receive
      a SQLAlchemy ``Session`` and use ``session.flush()``, never
      ``session.commit()``.
    - UnitOfWork / unit_of_work: the transaction boundary.  Each public
      mutating operation runs inside one scope; the outermost scope commits
      on success and rolls back on failure when auto_commit is on, and turns
      driver errors into StorageError.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - A money-affecting operation is all-or-nothing: nested scopes (e.g.
      settlement calling BalanceService.apply_delta) never commit on their
      own, only the outermost scope does.
    - With auto_commit off the caller owns commit/rollback; the scope only
      translates errors.

Failure modes:
    - StorageError (InternalError) wrapping any SQLAlchemyError that escapes
      an operation.  Ledger errors propagate unchanged.
"""

import functools
import time
from abc import ABC
from contextlib import contextmanager
from typing import Generic, TypeVar
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from station_ledger.db.base import Base
from station_ledger.domain.clock import Clock, SystemClock
from station_ledger.exceptions import StorageError
from station_ledger.logging_config import LogContext, get_logger

logger = get_logger("services.unit_of_work")

ModelType = TypeVar("ModelType", bound=Base)


class UnitOfWork:
    """
    Transaction boundary shared by all services wired to one session.

    Args:
        session: The session every service writes through.
        auto_commit: If True, the outermost scope commits on success and
            rolls back on failure.  If False, the caller manages the
            transaction.
    """

    def __init__(self, session: Session, auto_commit: bool = False):
        self.session = session
        self.auto_commit = auto_commit
        self._depth = 0

    @property
    def active(self) -> bool:
        return self._depth > 0

    @contextmanager
    def scope(self, operation: str):
        if self._depth > 0:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        self._depth = 1
        t0 = time.monotonic()
        try:
            correlation_id = LogContext.get_all().get("correlation_id") or str(uuid4())
            with LogContext.bind(operation=operation, correlation_id=correlation_id):
                try:
                    yield
                    if self.auto_commit:
                        self.session.commit()
                except SQLAlchemyError as exc:
                    self._rollback()
                    logger.error(
                        "operation_storage_failure",
                        extra={"duration_ms": _elapsed_ms(t0)},
                        exc_info=True,
                    )
                    detail = (str(exc).splitlines() or [type(exc).__name__])[0]
                    raise StorageError(operation, detail) from exc
                except Exception:
                    self._rollback()
                    logger.warning(
                        "operation_rolled_back",
                        extra={"duration_ms": _elapsed_ms(t0)},
                    )
                    raise
        finally:
            self._depth = 0

    def _rollback(self) -> None:
        if self.auto_commit:
            self.session.rollback()


def _elapsed_ms(t0: float) -> float:
    return round((time.monotonic() - t0) * 1000, 2)


def unit_of_work(operation: str):
    """Run the decorated service method inside ``self._uow.scope(operation)``."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            with self._uow.scope(operation):
                return fn(self, *args, **kwargs)

        return wrapper

    return decorator


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for ledger services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT commit or roll back itself; the UnitOfWork does, and
          only when auto_commit is on.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        uow: UnitOfWork | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._uow = uow or UnitOfWork(session)
