"""Transformation rule configuration model."""

from sqlalchemy import JSON, Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from profile_reconciler.models.base import Base, CreatedAtMixin, IdMixin
from profile_reconciler.models.enums import ConflictResolutionPolicy


class TransformationRule(Base, IdMixin, CreatedAtMixin):
    """Maps one submission question onto one or more profile fields."""

    __tablename__ = "transformation_rules"

    question_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    question_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_table: Mapped[str | None] = mapped_column(String(128), nullable=True)
    target_field: Mapped[str | None] = mapped_column(String(128), nullable=True)
    strategy: Mapped[str] = mapped_column(String(32), nullable=False)
    strategy_config_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    validation_rules_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    conflict_resolution: Mapped[str] = mapped_column(
        String(32),
        default=ConflictResolutionPolicy.NEWER_WINS.value,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
