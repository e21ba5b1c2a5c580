"""Schemas for submission and proposal review endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConflictRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    target_locator: str
    existing_value: str | None
    new_value: str
    severity: Literal["low", "medium", "high"]
    resolution_suggestion: str
    conflicting_proposal_id: int | None = None


class ProposalRead(BaseModel):
    """Profile update proposal response payload."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    subject_id: str
    source_id: str
    source_type: str
    update_type: str
    rule_id: int | None
    question_id: str | None
    target_table: str
    target_field: str
    target_locator: str
    current_value: str | None
    proposed_value: str
    value_kind: str
    reasoning: str | None
    confidence: float
    priority: int
    suggested_domains_json: list[str]
    conflicts_json: list[ConflictRead]
    status: str
    reviewed_by: str | None
    reviewed_at: datetime | None
    review_notes: str | None
    feedback_rating: int | None
    feedback_notes: str | None
    auto_apply_after: datetime | None
    created_at: datetime
    expires_at: datetime | None


class SubmissionCreate(BaseModel):
    """Raw answers collected from one source for one subject."""

    subject_id: str = Field(min_length=1)
    source_id: str = Field(min_length=1)
    source_type: str = Field(min_length=1)
    answers: dict[str, Any]
    update_type: Literal["SELF_REPORTED", "AI_SUGGESTED", "MANUAL"] | None = None


class DraftOutcomeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    proposal_id: int
    status: str
    target_locator: str
    proposed_value: str
    confidence: float
    is_valid: bool
    degraded: bool
    conflicts: list[ConflictRead]
    note: str | None = None


class SkippedRuleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rule_id: int | None
    question_id: str
    error: str


class SubmissionResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject_id: str
    source_id: str
    drafts: list[DraftOutcomeRead]
    skipped_rules: list[SkippedRuleRead]


class _FeedbackFields(BaseModel):
    reviewed_by: str = Field(min_length=1)
    feedback_rating: int | None = Field(default=None, ge=1, le=5)
    feedback_notes: str | None = None


class ApproveRequest(_FeedbackFields):
    ids: list[int] = Field(min_length=1)
    notes: str | None = None


class RejectRequest(_FeedbackFields):
    reason: str = Field(min_length=1)

    @model_validator(mode="after")
    def validate_reason(self) -> "RejectRequest":
        if not self.reason.strip():
            raise ValueError("A rejection reason is required.")
        return self


class ModifyRequest(_FeedbackFields):
    value: Any
    notes: str | None = None

    @model_validator(mode="after")
    def validate_value(self) -> "ModifyRequest":
        if self.value is None:
            raise ValueError("A replacement value is required.")
        return self


class BulkApproveRequest(BaseModel):
    subject_id: str = Field(min_length=1)
    reviewed_by: str = Field(min_length=1)
    source_id: str | None = None
    exclude_ids: list[int] = Field(default_factory=list)
    notes: str | None = None


class ApprovalErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    proposal_id: int
    error: str


class ApprovalResultRead(BaseModel):
    """Outcome of one approve or bulk-approve call."""

    model_config = ConfigDict(from_attributes=True)

    applied_count: int
    updated_fields: list[str]
    skipped: list[int]
    errors: list[ApprovalErrorRead]


class ReviewOutcomeRead(BaseModel):
    """Outcome of a single-proposal reject or modify call."""

    model_config = ConfigDict(from_attributes=True)

    proposal_id: int
    status: str
    skipped: bool
    applied: bool


class PendingBatchRead(BaseModel):
    """PENDING proposals from one submission for one subject."""

    model_config = ConfigDict(from_attributes=True)

    subject_id: str
    source_id: str
    created_at: datetime
    proposals: list[ProposalRead]


class ProposalStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    by_status: dict[str, int]
    pending_by_update_type: dict[str, int]
    pending_by_priority: dict[int, int]
    average_confidence: float | None
    average_feedback_rating: float | None
    recent_pending: list[ProposalRead]


class ExpireResultRead(BaseModel):
    expired: int
