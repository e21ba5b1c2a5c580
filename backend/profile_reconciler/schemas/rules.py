"""Schemas for transformation rule configuration endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from profile_reconciler.models.enums import ConflictResolutionPolicy, TransformationStrategyName


class RuleCreate(BaseModel):
    """Payload for creating one transformation rule."""

    question_id: str = Field(min_length=1)
    question_text: str | None = None
    target_table: str | None = Field(default=None, min_length=1)
    target_field: str | None = Field(default=None, min_length=1)
    strategy: TransformationStrategyName
    strategy_config_json: dict[str, Any] = Field(default_factory=dict)
    validation_rules_json: dict[str, Any] = Field(default_factory=dict)
    requires_approval: bool = True
    priority: int = Field(default=1, ge=0)
    conflict_resolution: ConflictResolutionPolicy = ConflictResolutionPolicy.NEWER_WINS
    is_active: bool = True

    @model_validator(mode="after")
    def validate_target(self) -> "RuleCreate":
        if self.strategy is TransformationStrategyName.MULTIPLE_FIELDS:
            return self
        if not self.target_table or not self.target_field:
            raise ValueError("target_table and target_field are required for this strategy.")
        return self


class RuleUpdate(BaseModel):
    """Allowed mutable fields for a transformation rule."""

    question_text: str | None = None
    target_table: str | None = Field(default=None, min_length=1)
    target_field: str | None = Field(default=None, min_length=1)
    strategy: TransformationStrategyName | None = None
    strategy_config_json: dict[str, Any] | None = None
    validation_rules_json: dict[str, Any] | None = None
    requires_approval: bool | None = None
    priority: int | None = Field(default=None, ge=0)
    conflict_resolution: ConflictResolutionPolicy | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def validate_non_empty_update(self) -> "RuleUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided.")
        return self


class RuleRead(BaseModel):
    """Transformation rule response payload."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    question_id: str
    question_text: str | None
    target_table: str | None
    target_field: str | None
    strategy: str
    strategy_config_json: dict[str, Any]
    validation_rules_json: dict[str, Any]
    requires_approval: bool
    priority: int
    conflict_resolution: str
    is_active: bool
    created_at: datetime
