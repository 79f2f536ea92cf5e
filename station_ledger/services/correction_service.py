"""
CorrectionService -- the append-only correction log.

Responsibility:
    Records one Correction row per changed field of a retroactive edit and
    reads back an entity's history.  Invoked by the invoice and settlement
    services; callers never need to write corrections directly.

Architecture position:
    Kernel > Services -- imperative shell, flush-only.

Invariants enforced:
    - Append-only: rows are only inserted (db/immutability.py blocks UPDATE
      and DELETE).
    - A row is written only when a reason is supplied and the old and new
      values differ.

Audit relevance:
    History is returned newest first, which is the order operators review
    a disputed batch or invoice in.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import select

from station_ledger.db.types import round_money
from station_ledger.domain.dtos import CorrectionRecord, FieldChange
from station_ledger.logging_config import get_logger
from station_ledger.models.correction import Correction, CorrectionEntity
from station_ledger.services.base import BaseService

logger = get_logger("services.correction")

DEFAULT_CHANGED_BY = "admin"


def _as_text(value) -> str | None:
    """Render a field value the way it is stored in the log."""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return str(round_money(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _entity_key(entity_type) -> str:
    return entity_type.value if isinstance(entity_type, CorrectionEntity) else str(entity_type)


class CorrectionService(BaseService[Correction]):
    """Append-only writer and reader for corrections."""

    def __init__(self, session, clock=None, uow=None, default_changed_by: str = DEFAULT_CHANGED_BY):
        super().__init__(session, clock, uow)
        self._default_changed_by = default_changed_by

    def record(
        self,
        entity_type: CorrectionEntity | str,
        entity_id,
        field: str,
        old_value,
        new_value,
        reason: str | None,
        changed_by: str | None = None,
    ) -> CorrectionRecord | None:
        """
        Append one correction.

        Returns:
            The recorded correction, or None when nothing was written
            because no reason was given or the value did not change.
        """
        reason = (reason or "").strip()
        old_text, new_text = _as_text(old_value), _as_text(new_value)
        if not reason or old_text == new_text:
            return None

        row = Correction(
            entity_type=_entity_key(entity_type),
            entity_id=str(entity_id),
            field=field,
            old_value=old_text,
            new_value=new_text,
            reason=reason,
            changed_by=(changed_by or "").strip() or self._default_changed_by,
            created_at=self._clock.now(),
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "correction_recorded",
            extra={
                "entity_type": row.entity_type,
                "entity_id": row.entity_id,
                "field": field,
                "changed_by": row.changed_by,
            },
        )
        return CorrectionRecord.from_model(row)

    def record_changes(
        self,
        entity_type: CorrectionEntity | str,
        entity_id,
        changes: list[FieldChange],
        reason: str | None,
        changed_by: str | None = None,
    ) -> list[CorrectionRecord]:
        recorded = []
        for change in changes:
            result = self.record(
                entity_type,
                entity_id,
                change.field,
                change.old_value,
                change.new_value,
                reason,
                changed_by,
            )
            if result is not None:
                recorded.append(result)
        return recorded

    def history(self, entity_type: CorrectionEntity | str, entity_id) -> list[CorrectionRecord]:
        """All corrections for one entity, newest first."""
        rows = self.session.execute(
            select(Correction)
            .where(
                Correction.entity_type == _entity_key(entity_type),
                Correction.entity_id == str(entity_id),
            )
            .order_by(Correction.created_at.desc(), Correction.field)
        ).scalars().all()
        return [CorrectionRecord.from_model(row) for row in rows]
