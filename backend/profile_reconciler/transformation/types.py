"""Typed transformation inputs and outputs independent of persistence."""

from dataclasses import dataclass, field
from typing import Any

from profile_reconciler.transformation.values import ProposedValue


@dataclass(frozen=True, slots=True)
class TargetLocator:
    """Addressable (table, field) pair a proposal writes to."""

    table: str
    field: str

    @property
    def path(self) -> str:
        return f"{self.table}.{self.field}"


@dataclass(slots=True)
class RawSubmission:
    """Answers collected from one source for one subject."""

    subject_id: str
    source_id: str
    source_type: str
    answers: dict[str, Any] = field(default_factory=dict)
    update_type: str | None = None


@dataclass(slots=True)
class ProposalDraft:
    """Field-level change produced by a transformation strategy."""

    subject_id: str
    source_id: str
    source_type: str
    update_type: str
    locator: TargetLocator
    value: ProposedValue
    confidence: float
    reasoning: str
    rule_id: int | None = None
    question_id: str | None = None
    priority: int = 1
    requires_approval: bool = True
    conflict_resolution: str = "NEWER_WINS"
    validation_rules: dict[str, Any] = field(default_factory=dict)
    auto_apply_after_hours: float | None = None
