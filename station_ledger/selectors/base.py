"""
Module: station_ledger.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.  Where a
      cached value may be stale (batch totals) they return the recomputed
      value and leave the cache fill to the services.
    - Selectors return DTOs, never ORM rows.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from station_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session
