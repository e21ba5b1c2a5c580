"""Writes approved values to the profile store and appends audit entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from profile_reconciler.errors import ApplyFailure
from profile_reconciler.models.enums import AuditAction
from profile_reconciler.models.profile_audit_log import ProfileAuditLog
from profile_reconciler.services.profile_store import ProfileStore
from profile_reconciler.transformation.types import TargetLocator
from profile_reconciler.transformation.values import ProposedValue, deserialize_value, serialize_value

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AppliedChange:
    locator: TargetLocator
    previous_value: str | None
    new_value: str


class ApplicationExecutor:
    """Apply one value to one locator of one subject.

    ``apply`` writes inside the caller's transaction and does not commit, so
    the caller can pair the write with a status transition. Re-applying the
    same value leaves the store unchanged apart from its timestamp.
    """

    def __init__(self, db: Session, store: ProfileStore) -> None:
        self._db = db
        self._store = store

    @property
    def store(self) -> ProfileStore:
        return self._store

    def apply(
        self,
        locator: TargetLocator,
        value: ProposedValue | str,
        subject_id: str,
        *,
        proposal_id: int | None = None,
        value_kind: str | None = None,
    ) -> AppliedChange:
        self._store.check_locator(locator)
        typed = deserialize_value(value, value_kind) if isinstance(value, str) else value
        serialized = serialize_value(typed)
        try:
            previous = self._store.get_current_value(subject_id, locator)
            self._store.set_value(subject_id, locator, serialized)
        except SQLAlchemyError as exc:
            raise ApplyFailure(
                f"Failed to write {locator.path} for subject {subject_id}: {exc}",
                proposal_id=proposal_id,
            ) from exc
        return AppliedChange(locator=locator, previous_value=previous, new_value=serialized)

    def append_audit(
        self,
        *,
        proposal_id: int | None,
        subject_id: str,
        action: AuditAction,
        performed_by: str,
        locator: TargetLocator,
        previous_value: str | None,
        new_value: str | None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Append and commit one audit entry; a failure is logged, never raised."""

        try:
            self._db.add(
                ProfileAuditLog(
                    proposal_id=proposal_id,
                    subject_id=subject_id,
                    action=action.value,
                    performed_by=performed_by,
                    target_table=locator.table,
                    target_field=locator.field,
                    previous_value=previous_value,
                    new_value=new_value,
                    details_json=dict(details or {}),
                )
            )
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.warning(
                "application.audit_append_failed proposal_id=%s subject_id=%s locator=%s error=%s",
                proposal_id,
                subject_id,
                locator.path,
                exc,
            )
            return False
        return True
