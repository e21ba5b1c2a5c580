"""Authoritative profile field storage keyed by subject and locator."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from profile_reconciler.models.base import Base, IdMixin


class ProfileFieldValue(Base, IdMixin):
    """Current value of one profile field for one subject."""

    __tablename__ = "profile_field_values"
    __table_args__ = (
        UniqueConstraint("subject_id", "table_name", "field_name", name="uq_profile_field_values_locator"),
    )

    subject_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    table_name: Mapped[str] = mapped_column(String(128), nullable=False)
    field_name: Mapped[str] = mapped_column(String(128), nullable=False)
    value_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
