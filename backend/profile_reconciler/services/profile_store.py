"""Authoritative profile store protocol and its default SQL implementation."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from profile_reconciler.errors import ConfigurationError
from profile_reconciler.models.profile_field_value import ProfileFieldValue
from profile_reconciler.services.proposal_store import utcnow
from profile_reconciler.transformation.types import TargetLocator

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,127}$")


class ProfileStore(Protocol):
    """Keyed read/write access to the authoritative subject profile."""

    def check_locator(self, locator: TargetLocator) -> None:
        """Raise ``ConfigurationError`` when the locator is not writable."""

    def get_current_value(self, subject_id: str, locator: TargetLocator) -> str | None:
        """Return the stored serialized value, or None when unset."""

    def set_value(self, subject_id: str, locator: TargetLocator, value: str) -> None:
        """Write the serialized value and bump the last-modified timestamp."""

    def snapshot(self, subject_id: str) -> dict[str, str | None]:
        """Return the subject's stored fields keyed by ``table.field``."""


class SqlProfileStore:
    """Profile store backed by the ``profile_field_values`` table.

    Only the tables listed at construction are writable. Field names must be
    plain identifiers. The store flushes but never commits.
    """

    def __init__(self, db: Session, allowed_tables: Iterable[str]) -> None:
        self._db = db
        self._allowed_tables = frozenset(allowed_tables)

    def check_locator(self, locator: TargetLocator) -> None:
        if locator.table not in self._allowed_tables:
            raise ConfigurationError(f"Unknown profile table: {locator.table}")
        if not _IDENTIFIER_RE.match(locator.field):
            raise ConfigurationError(f"Invalid profile field name: {locator.field!r}")

    def get_current_value(self, subject_id: str, locator: TargetLocator) -> str | None:
        row = self._row(subject_id, locator)
        return row.value_text if row is not None else None

    def set_value(self, subject_id: str, locator: TargetLocator, value: str) -> None:
        self.check_locator(locator)
        row = self._row(subject_id, locator)
        if row is None:
            row = ProfileFieldValue(
                subject_id=subject_id,
                table_name=locator.table,
                field_name=locator.field,
            )
            self._db.add(row)
        row.value_text = value
        row.updated_at = utcnow()
        self._db.flush()

    def snapshot(self, subject_id: str) -> dict[str, str | None]:
        """Return every stored field of one subject keyed by ``table.field``."""

        rows = self._db.scalars(select(ProfileFieldValue).where(ProfileFieldValue.subject_id == subject_id))
        return {f"{row.table_name}.{row.field_name}": row.value_text for row in rows}

    def _row(self, subject_id: str, locator: TargetLocator) -> ProfileFieldValue | None:
        return self._db.scalar(
            select(ProfileFieldValue).where(
                ProfileFieldValue.subject_id == subject_id,
                ProfileFieldValue.table_name == locator.table,
                ProfileFieldValue.field_name == locator.field,
            )
        )
