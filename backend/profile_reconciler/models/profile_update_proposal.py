"""Profile update proposal ORM model."""

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from profile_reconciler.models.base import Base, CreatedAtMixin, IdMixin
from profile_reconciler.models.enums import ProposalStatus


class ProfileUpdateProposal(Base, IdMixin, CreatedAtMixin):
    """One field-level change proposed against a subject profile.

    ``auto_apply_after`` records the deadline a rule's ``autoApplyAfterHours``
    suggests. It is informational only: nothing applies a proposal when the
    deadline passes, and overdue PENDING proposals are only ever expired.
    """

    __tablename__ = "profile_update_proposals"
    __table_args__ = (
        Index("ix_profile_update_proposals_subject_status", "subject_id", "status"),
        Index(
            "ix_profile_update_proposals_locator",
            "subject_id",
            "target_table",
            "target_field",
        ),
        CheckConstraint(
            "feedback_rating IS NULL OR (feedback_rating BETWEEN 1 AND 5)",
            name="ck_profile_update_proposals_feedback_rating",
        ),
    )

    subject_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    source_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    source_type: Mapped[str] = mapped_column(String(64), nullable=False)
    update_type: Mapped[str] = mapped_column(String(32), nullable=False)
    rule_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    question_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_table: Mapped[str] = mapped_column(String(128), nullable=False)
    target_field: Mapped[str] = mapped_column(String(128), nullable=False)
    current_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    proposed_value: Mapped[str] = mapped_column(Text, nullable=False)
    value_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    suggested_domains_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    conflicts_json: Mapped[list[dict[str, object]]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        default=ProposalStatus.PENDING.value,
        index=True,
        nullable=False,
    )
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    feedback_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_apply_after: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True, nullable=True)

    @property
    def target_locator(self) -> str:
        return f"{self.target_table}.{self.target_field}"
