"""Append-only provenance log for applied and reviewed proposals."""

from sqlalchemy import JSON, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from profile_reconciler.models.base import Base, CreatedAtMixin, IdMixin


class ProfileAuditLog(Base, IdMixin, CreatedAtMixin):
    """Immutable record of who changed which profile field, and from what."""

    __tablename__ = "profile_audit_log"

    proposal_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    subject_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    target_table: Mapped[str] = mapped_column(String(128), nullable=False)
    target_field: Mapped[str] = mapped_column(String(128), nullable=False)
    previous_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    details_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
