"""Enumerations shared by the reconciliation models and services."""

from __future__ import annotations

from enum import StrEnum


class ProposalStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MODIFIED = "MODIFIED"
    AUTO_APPLIED = "AUTO_APPLIED"
    EXPIRED = "EXPIRED"


class UpdateType(StrEnum):
    SELF_REPORTED = "SELF_REPORTED"
    AI_SUGGESTED = "AI_SUGGESTED"
    MANUAL = "MANUAL"


class TransformationStrategyName(StrEnum):
    DIRECT = "DIRECT"
    AI_STANDARDIZE = "AI_STANDARDIZE"
    SCALE_CONVERT = "SCALE_CONVERT"
    ARRAY_MERGE = "ARRAY_MERGE"
    MULTIPLE_FIELDS = "MULTIPLE_FIELDS"


class ConflictResolutionPolicy(StrEnum):
    NEWER_WINS = "NEWER_WINS"
    MERGE = "MERGE"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class AuditAction(StrEnum):
    PROFILE_UPDATED = "PROFILE_UPDATED"
    AUTO_APPLIED = "AUTO_APPLIED"
    MODIFIED = "MODIFIED"
    REJECTED = "REJECTED"
