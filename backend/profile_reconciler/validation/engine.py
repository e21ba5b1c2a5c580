"""Plausibility scoring and conflict detection for proposal drafts."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import asdict, dataclass, field
from time import perf_counter
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from profile_reconciler.models.enums import ConflictResolutionPolicy
from profile_reconciler.transformation.types import ProposalDraft, TargetLocator
from profile_reconciler.transformation.values import (
    BooleanValue,
    JsonObjectValue,
    NumberValue,
    ProposedValue,
    StringArrayValue,
    TextValue,
    deserialize_value,
    serialize_value,
    to_python,
)
from profile_reconciler.validation.judgement import NarrativeJudge, strip_code_fence

logger = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high"]

KNOWN_SOURCE_CONFIDENCE = 60.0
UNKNOWN_SOURCE_CONFIDENCE = 50.0
_HIGH_DIVERGENCE = 0.5
_MEDIUM_DIVERGENCE = 0.1

SOURCE_DOMAINS: dict[str, list[str]] = {
    "counseling_session": ["social_emotional", "behavioral", "motivation"],
    "survey_response": ["social_emotional", "risk_factors"],
    "exam_result": ["academic"],
    "behavior_incident": ["behavioral", "risk_factors"],
    "meeting_note": ["social_emotional", "family"],
    "attendance": ["behavioral", "risk_factors"],
    "parent_meeting": ["family", "social_emotional"],
    "self_assessment": ["motivation", "social_emotional"],
    "manual_input": ["academic", "social_emotional"],
}

_RESOLUTION_SUGGESTIONS = {
    ConflictResolutionPolicy.NEWER_WINS.value: "Approving replaces the stored value with the newer one.",
    ConflictResolutionPolicy.MERGE.value: "Combine both values before approving.",
    ConflictResolutionPolicy.MANUAL_REVIEW.value: "Compare both values and keep the one that is correct.",
}


@dataclass(slots=True)
class DataConflict:
    """Disagreement between a proposed value and a stored or pending one."""

    target_locator: str
    existing_value: str | None
    new_value: str
    severity: Severity
    resolution_suggestion: str
    conflicting_proposal_id: int | None = None

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    confidence: float
    reasoning: str
    suggested_domains: list[str] = field(default_factory=list)
    conflicts: list[DataConflict] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    degraded: bool = False


class ValidationRules(BaseModel):
    """Deterministic checks a rule may attach to its target field."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    min: float | None = None
    max: float | None = None
    min_length: int | None = Field(default=None, alias="minLength", ge=0)
    max_length: int | None = Field(default=None, alias="maxLength", ge=0)
    pattern: str | None = None
    enum: list[str] | None = None
    required: bool = False


class _JudgeConflict(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    existing_value: Any = Field(default=None, alias="existingValue")
    new_value: Any = Field(default=None, alias="newValue")
    severity: Severity = "medium"
    resolution_suggestion: str = Field(default="", alias="resolutionSuggestion")


class _JudgeOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_valid: bool = Field(alias="isValid")
    confidence: float = Field(ge=0.0, le=100.0)
    reasoning: str = ""
    suggested_domains: list[str] = Field(default_factory=list, alias="suggestedDomains")
    conflicts: list[_JudgeConflict] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class ValidationEngine:
    """Deterministic checks plus an optional narrative judge with a static fallback.

    ``validate`` never raises on judge failures: an unavailable judge or
    output that does not parse degrades to the static source/domain table.
    The engine never writes anything; its output is folded into the proposal
    by the caller.
    """

    def __init__(self, judge: NarrativeJudge | None = None) -> None:
        self._judge = judge

    def validate(
        self,
        draft: ProposalDraft,
        current_profile_snapshot: dict[str, str | None] | None = None,
    ) -> ValidationResult:
        snapshot = current_profile_snapshot or {}
        issues = check_deterministic(draft)
        stored_conflicts = self.detect_conflicts(
            draft.locator,
            draft.value,
            snapshot.get(draft.locator.path),
            policy=draft.conflict_resolution,
        )
        if issues:
            return ValidationResult(
                is_valid=False,
                confidence=0.0,
                reasoning="Failed deterministic checks: " + "; ".join(issues),
                suggested_domains=list(SOURCE_DOMAINS.get(draft.source_type, [])),
                conflicts=stored_conflicts,
                recommendations=["Correct the value or the rule before approving."],
            )
        if self._judge is None:
            result = _fallback(draft, parse_failed=False)
        else:
            result = self._judge_draft(draft, snapshot)
        result.conflicts = stored_conflicts + result.conflicts
        return result

    def detect_conflicts(
        self,
        target_locator: TargetLocator | str,
        new_value: ProposedValue,
        existing_value: ProposedValue | str | None,
        *,
        policy: str | None = None,
        conflicting_proposal_id: int | None = None,
    ) -> list[DataConflict]:
        """Compare one proposed value against a stored or pending one.

        Empty or equal existing values produce no conflict. Severity is
        ``high`` for a kind mismatch or a numeric change above half the old
        magnitude, ``low`` for small numeric drift or arrays that only gain
        items, and ``medium`` otherwise.
        """

        existing = _as_comparable(existing_value, new_value)
        if existing is None or _is_empty(existing):
            return []
        severity = _severity(existing, new_value)
        if severity is None:
            return []
        locator = target_locator.path if isinstance(target_locator, TargetLocator) else target_locator
        return [
            DataConflict(
                target_locator=locator,
                existing_value=serialize_value(existing),
                new_value=serialize_value(new_value),
                severity=severity,
                resolution_suggestion=_RESOLUTION_SUGGESTIONS.get(
                    policy or "",
                    _RESOLUTION_SUGGESTIONS[ConflictResolutionPolicy.MANUAL_REVIEW.value],
                ),
                conflicting_proposal_id=conflicting_proposal_id,
            )
        ]

    def _judge_draft(self, draft: ProposalDraft, snapshot: dict[str, str | None]) -> ValidationResult:
        started = perf_counter()
        prompt = build_judge_prompt(draft, snapshot)
        try:
            raw = self._judge.judge(prompt)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "validation.judge_unavailable subject_id=%s locator=%s elapsed_ms=%.2f error_type=%s error=%s",
                draft.subject_id,
                draft.locator.path,
                (perf_counter() - started) * 1000.0,
                type(exc).__name__,
                exc,
            )
            return _fallback(draft, parse_failed=False)
        if not isinstance(raw, str):
            logger.warning(
                "validation.judge_unparseable subject_id=%s locator=%s reply_type=%s",
                draft.subject_id,
                draft.locator.path,
                type(raw).__name__,
            )
            return _fallback(draft, parse_failed=True)
        try:
            parsed = _JudgeOutput.model_validate_json(strip_code_fence(raw))
        except ValidationError as exc:
            logger.warning(
                "validation.judge_unparseable subject_id=%s locator=%s errors=%d",
                draft.subject_id,
                draft.locator.path,
                exc.error_count(),
            )
            return _fallback(draft, parse_failed=True)

        logger.info(
            "validation.judge_timing subject_id=%s locator=%s confidence=%.1f elapsed_ms=%.2f",
            draft.subject_id,
            draft.locator.path,
            parsed.confidence,
            (perf_counter() - started) * 1000.0,
        )
        new_value = serialize_value(draft.value)
        return ValidationResult(
            is_valid=parsed.is_valid,
            confidence=parsed.confidence,
            reasoning=parsed.reasoning.strip() or "Narrative review completed.",
            suggested_domains=parsed.suggested_domains,
            conflicts=[
                DataConflict(
                    target_locator=draft.locator.path,
                    existing_value=_stringify(item.existing_value),
                    new_value=_stringify(item.new_value) or new_value,
                    severity=item.severity,
                    resolution_suggestion=item.resolution_suggestion,
                )
                for item in parsed.conflicts
            ],
            recommendations=parsed.recommendations,
        )


def build_judge_prompt(draft: ProposalDraft, snapshot: dict[str, str | None]) -> str:
    return json.dumps(
        {
            "task": "Judge whether the proposed profile change is meaningful and consistent with the stored profile.",
            "source": {
                "type": draft.source_type,
                "id": draft.source_id,
                "update_type": draft.update_type,
            },
            "target": draft.locator.path,
            "proposed_value": to_python(draft.value),
            "reasoning": draft.reasoning,
            "profile_excerpt": {key: value for key, value in snapshot.items() if value is not None},
            "response_format": {
                "isValid": "boolean",
                "confidence": "integer 0-100",
                "reasoning": "string",
                "suggestedDomains": "array of strings",
                "conflicts": [
                    {
                        "existingValue": "string",
                        "newValue": "string",
                        "severity": "low | medium | high",
                        "resolutionSuggestion": "string",
                    }
                ],
                "recommendations": "array of strings",
            },
        },
        ensure_ascii=False,
        default=str,
    )


def check_deterministic(draft: ProposalDraft) -> list[str]:
    """Return human-readable problems found without consulting the judge."""

    issues: list[str] = []
    if not 0.0 <= draft.confidence <= 1.0:
        issues.append(f"confidence {draft.confidence} is outside [0, 1]")
    value = draft.value
    if isinstance(value, NumberValue) and isinstance(value.value, float) and not math.isfinite(value.value):
        issues.append("number is not finite")

    try:
        rules = ValidationRules.model_validate(draft.validation_rules or {})
    except ValidationError as exc:
        logger.warning(
            "validation.rules_invalid rule_id=%s errors=%d",
            draft.rule_id,
            exc.error_count(),
        )
        return issues

    if rules.required and _is_empty(value):
        issues.append("a value is required")
    if isinstance(value, NumberValue):
        if rules.min is not None and value.value < rules.min:
            issues.append(f"{value.value} is below the minimum {rules.min:g}")
        if rules.max is not None and value.value > rules.max:
            issues.append(f"{value.value} is above the maximum {rules.max:g}")

    if isinstance(value, (TextValue, StringArrayValue)):
        length = len(value.value)
        if rules.min_length is not None and length < rules.min_length:
            issues.append(f"length {length} is below {rules.min_length}")
        if rules.max_length is not None and length > rules.max_length:
            issues.append(f"length {length} is above {rules.max_length}")

    if isinstance(value, TextValue):
        items = [value.value]
    elif isinstance(value, StringArrayValue):
        items = list(value.value)
    else:
        items = []
    if rules.pattern and items:
        try:
            compiled = re.compile(rules.pattern)
        except re.error:
            logger.warning("validation.pattern_invalid rule_id=%s pattern=%r", draft.rule_id, rules.pattern)
        else:
            for item in items:
                if compiled.fullmatch(item) is None:
                    issues.append(f"{item!r} does not match {rules.pattern!r}")
    if rules.enum and items:
        allowed = {entry.strip().lower() for entry in rules.enum}
        for item in items:
            if item.strip().lower() not in allowed:
                issues.append(f"{item!r} is not one of the allowed values")
    return issues


def _fallback(draft: ProposalDraft, *, parse_failed: bool) -> ValidationResult:
    domains = SOURCE_DOMAINS.get(draft.source_type)
    if parse_failed or domains is None:
        confidence = UNKNOWN_SOURCE_CONFIDENCE
    else:
        confidence = KNOWN_SOURCE_CONFIDENCE
    reasoning = (
        "Narrative review output could not be parsed; default scoring used."
        if parse_failed
        else "Narrative review unavailable; basic validation used."
    )
    return ValidationResult(
        is_valid=True,
        confidence=confidence,
        reasoning=reasoning,
        suggested_domains=list(domains or []),
        recommendations=["Review the value manually."],
        degraded=True,
    )


def _as_comparable(existing: ProposedValue | str | None, new_value: ProposedValue) -> ProposedValue | None:
    if existing is None or not isinstance(existing, str):
        return existing
    return deserialize_value(existing, new_value.kind)


def _is_empty(value: ProposedValue) -> bool:
    if isinstance(value, TextValue):
        return not value.value.strip()
    if isinstance(value, (StringArrayValue, JsonObjectValue)):
        return len(value.value) == 0
    return False


def _severity(existing: ProposedValue, new_value: ProposedValue) -> Severity | None:
    if existing.kind != new_value.kind:
        return "high"
    if isinstance(new_value, NumberValue) and isinstance(existing, NumberValue):
        old, new = float(existing.value), float(new_value.value)
        if old == new:
            return None
        base = abs(old) if old else abs(new)
        divergence = abs(new - old) / base
        if divergence > _HIGH_DIVERGENCE:
            return "high"
        if divergence > _MEDIUM_DIVERGENCE:
            return "medium"
        return "low"
    if isinstance(new_value, TextValue) and isinstance(existing, TextValue):
        if existing.value.strip().lower() == new_value.value.strip().lower():
            return None
        return "medium"
    if isinstance(new_value, StringArrayValue) and isinstance(existing, StringArrayValue):
        old_items = {item.strip().lower() for item in existing.value}
        new_items = {item.strip().lower() for item in new_value.value}
        if old_items == new_items:
            return None
        return "low" if old_items <= new_items else "medium"
    if isinstance(new_value, BooleanValue) and isinstance(existing, BooleanValue):
        return None if existing.value == new_value.value else "medium"
    return None if existing == new_value else "medium"


def _stringify(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)
