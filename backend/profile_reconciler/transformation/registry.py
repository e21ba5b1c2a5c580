"""Pluggable strategies that turn one raw answer into field-level proposal drafts."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from profile_reconciler.errors import (
    ConfigurationError,
    TransformationError,
    UnknownStrategyError,
)
from profile_reconciler.models.enums import TransformationStrategyName, UpdateType
from profile_reconciler.models.transformation_rule import TransformationRule
from profile_reconciler.transformation.standardizer import ValueStandardizer
from profile_reconciler.transformation.types import ProposalDraft, TargetLocator
from profile_reconciler.transformation.values import (
    BooleanValue,
    JsonObjectValue,
    NumberValue,
    ProposedValue,
    StringArrayValue,
    TextValue,
    deserialize_value,
    from_python,
    is_empty_answer,
    to_boolean,
    to_number,
)

logger = logging.getLogger(__name__)

DEFAULT_MULTIPLE_FIELDS_TABLE = "students"
VOCABULARY_MATCH_CONFIDENCE = 0.9
STANDARDIZER_CONFIDENCE_CAP = 0.75
UNVERIFIED_CONFIDENCE = 0.5
PARSE_WITH_AI_CONFIDENCE = 0.85

_SOURCE_LABELS = {
    "self_assessment": "Self-report",
    "survey_response": "Survey answer",
    "counseling_session": "Counseling note",
    "meeting_note": "Meeting note",
    "parent_meeting": "Parent meeting",
    "manual_input": "Manual entry",
}


class ScaleBounds(BaseModel):
    min: float
    max: float


class FieldMapping(BaseModel):
    """One target of a MULTIPLE_FIELDS rule."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    field: str = Field(min_length=1)
    table: str | None = None
    extract_from: str = Field(default="full_text", alias="extractFrom")
    parse_with_ai: bool = Field(default=False, alias="parseWithAI")


class StrategyConfig(BaseModel):
    """Validated view of ``TransformationRule.strategy_config_json``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transform_type: Literal["TEXT", "ARRAY", "NUMBER", "DATE", "BOOLEAN"] = Field(
        default="TEXT",
        alias="transformType",
    )
    standard_values: list[str] = Field(default_factory=list, alias="standardValues")
    allow_custom: bool = Field(default=True, alias="allowCustom")
    mappings: list[FieldMapping] = Field(default_factory=list)
    source_scale: ScaleBounds | None = Field(default=None, alias="sourceScale")
    target_scale: ScaleBounds | None = Field(default=None, alias="targetScale")
    mapping: dict[str, Any] | None = None
    separator: str = Field(default=",", min_length=1)
    merge_strategy: Literal["REPLACE", "APPEND", "UNIQUE_APPEND"] = Field(
        default="REPLACE",
        alias="mergeStrategy",
    )
    ai_prompt: str | None = Field(default=None, alias="aiPrompt")
    auto_apply_after_hours: float | None = Field(default=None, alias="autoApplyAfterHours", gt=0)

    @model_validator(mode="after")
    def validate_scales(self) -> "StrategyConfig":
        if (self.source_scale is None) != (self.target_scale is None):
            raise ValueError("sourceScale and targetScale must be given together.")
        if self.source_scale is not None and self.source_scale.max == self.source_scale.min:
            raise ValueError("sourceScale must span a non-empty range.")
        return self


@dataclass(slots=True)
class TransformationContext:
    """Per-call inputs a strategy may consult besides the rule and answer."""

    subject_id: str
    source_id: str
    source_type: str
    current_value: ProposedValue | None = None
    standardizer: ValueStandardizer | None = None


@dataclass(slots=True)
class FieldProposal:
    """Strategy output before it is bound to a subject and submission."""

    locator: TargetLocator
    value: ProposedValue
    confidence: float
    method: str


class TransformationStrategy(ABC):
    """Abstract transformation strategy."""

    @abstractmethod
    def build(
        self,
        rule: TransformationRule,
        config: StrategyConfig,
        answer: Any,
        context: TransformationContext,
    ) -> list[FieldProposal]:
        """Return zero or more field proposals for one answer."""


class DirectStrategy(TransformationStrategy):
    """Cast the answer to the declared type."""

    def build(
        self,
        rule: TransformationRule,
        config: StrategyConfig,
        answer: Any,
        context: TransformationContext,
    ) -> list[FieldProposal]:
        locator = require_locator(rule)
        try:
            value = _cast_direct(answer, config.transform_type)
        except ValueError as exc:
            raise TransformationError(
                f"Rule {rule.id}: cannot read answer as {config.transform_type}: {exc}"
            ) from exc
        return [FieldProposal(locator=locator, value=value, confidence=1.0, method="direct")]


class AIStandardizeStrategy(TransformationStrategy):
    """Match the answer against a closed vocabulary, delegating misses to the standardizer."""

    def build(
        self,
        rule: TransformationRule,
        config: StrategyConfig,
        answer: Any,
        context: TransformationContext,
    ) -> list[FieldProposal]:
        locator = require_locator(rule)
        vocabulary = config.standard_values
        if isinstance(answer, (list, tuple)):
            value, confidence = self._standardize_many(rule, config, list(answer), context)
        else:
            value, confidence = self._standardize_one(rule, config, answer, context)
        if not config.allow_custom and vocabulary and not _within_vocabulary(value, vocabulary):
            raise TransformationError(f"Rule {rule.id}: answer does not fit the allowed vocabulary")
        return [FieldProposal(locator=locator, value=value, confidence=confidence, method="ai_standardize")]

    def _standardize_one(
        self,
        rule: TransformationRule,
        config: StrategyConfig,
        answer: Any,
        context: TransformationContext,
    ) -> tuple[ProposedValue, float]:
        text = str(answer).strip()
        match = _match_vocabulary(text, config.standard_values)
        if match is not None:
            return TextValue(match), VOCABULARY_MATCH_CONFIDENCE
        delegated = _delegate(rule, config, text, context)
        if delegated is not None:
            return delegated
        return TextValue(text), UNVERIFIED_CONFIDENCE

    def _standardize_many(
        self,
        rule: TransformationRule,
        config: StrategyConfig,
        answers: list[Any],
        context: TransformationContext,
    ) -> tuple[ProposedValue, float]:
        matched: list[str] = []
        unmatched: list[str] = []
        for item in answers:
            text = str(item).strip()
            if not text:
                continue
            match = _match_vocabulary(text, config.standard_values)
            if match is None:
                unmatched.append(text)
            elif match not in matched:
                matched.append(match)
        if not unmatched:
            return StringArrayValue(tuple(matched)), VOCABULARY_MATCH_CONFIDENCE

        delegated = _delegate(rule, config, unmatched, context)
        if delegated is not None:
            standardized, confidence = delegated
            extra = (
                list(standardized.value)
                if isinstance(standardized, StringArrayValue)
                else [str(standardized.value)]
            )
            merged = matched + [item for item in extra if item not in matched]
            return StringArrayValue(tuple(merged)), confidence
        if not config.allow_custom:
            return StringArrayValue(tuple(matched)), VOCABULARY_MATCH_CONFIDENCE
        return StringArrayValue(tuple(matched + unmatched)), UNVERIFIED_CONFIDENCE


class ScaleConvertStrategy(TransformationStrategy):
    """Rescale a numeric answer linearly or through a lookup table."""

    def build(
        self,
        rule: TransformationRule,
        config: StrategyConfig,
        answer: Any,
        context: TransformationContext,
    ) -> list[FieldProposal]:
        locator = require_locator(rule)
        if config.source_scale is not None and config.target_scale is not None:
            try:
                number = to_number(answer)
            except ValueError as exc:
                raise TransformationError(f"Rule {rule.id}: scale answer is not numeric: {exc}") from exc
            source, target = config.source_scale, config.target_scale
            normalized = (number - source.min) / (source.max - source.min)
            converted = target.min + normalized * (target.max - target.min)
            value: ProposedValue = NumberValue(_round_one_decimal(converted))
        elif config.mapping:
            key = str(answer).strip()
            if key in config.mapping:
                value = from_python(config.mapping[key])
            else:
                try:
                    value = NumberValue(to_number(answer))
                except ValueError as exc:
                    raise TransformationError(f"Rule {rule.id}: no scale mapping for {key!r}") from exc
        else:
            raise ConfigurationError(
                f"Rule {rule.id}: SCALE_CONVERT needs sourceScale/targetScale or a mapping table",
                rule_id=rule.id,
            )
        return [FieldProposal(locator=locator, value=value, confidence=1.0, method="scale_convert")]


class ArrayMergeStrategy(TransformationStrategy):
    """Normalize a list or delimited string into a clean string array."""

    def build(
        self,
        rule: TransformationRule,
        config: StrategyConfig,
        answer: Any,
        context: TransformationContext,
    ) -> list[FieldProposal]:
        locator = require_locator(rule)
        if isinstance(answer, (list, tuple, set)):
            items = [str(item).strip() for item in answer]
        elif isinstance(answer, str):
            items = [part.strip() for part in answer.split(config.separator)]
        else:
            items = [str(answer).strip()]
        items = [item for item in items if item]
        if not items:
            return []
        if config.merge_strategy != "REPLACE":
            items = _merge_with_existing(context.current_value, items, unique=config.merge_strategy == "UNIQUE_APPEND")
        return [
            FieldProposal(
                locator=locator,
                value=StringArrayValue(tuple(items)),
                confidence=1.0,
                method="array_merge",
            )
        ]


class MultipleFieldsStrategy(TransformationStrategy):
    """Fan one answer out into one proposal per configured field mapping."""

    def build(
        self,
        rule: TransformationRule,
        config: StrategyConfig,
        answer: Any,
        context: TransformationContext,
    ) -> list[FieldProposal]:
        if not config.mappings:
            raise ConfigurationError(f"Rule {rule.id}: MULTIPLE_FIELDS needs at least one mapping", rule_id=rule.id)
        proposals: list[FieldProposal] = []
        for mapping in config.mappings:
            table = mapping.table or rule.target_table or DEFAULT_MULTIPLE_FIELDS_TABLE
            if mapping.extract_from == "full_text":
                extracted = answer
            elif isinstance(answer, dict):
                extracted = answer.get(mapping.extract_from)
            else:
                extracted = None
            if is_empty_answer(extracted):
                continue
            value = TextValue(extracted) if isinstance(extracted, str) else from_python(extracted)
            proposals.append(
                FieldProposal(
                    locator=TargetLocator(table=table, field=mapping.field),
                    value=value,
                    confidence=PARSE_WITH_AI_CONFIDENCE if mapping.parse_with_ai else 1.0,
                    method="multiple_fields",
                )
            )
        return proposals


def default_strategies() -> dict[str, TransformationStrategy]:
    return {
        TransformationStrategyName.DIRECT.value: DirectStrategy(),
        TransformationStrategyName.AI_STANDARDIZE.value: AIStandardizeStrategy(),
        TransformationStrategyName.SCALE_CONVERT.value: ScaleConvertStrategy(),
        TransformationStrategyName.ARRAY_MERGE.value: ArrayMergeStrategy(),
        TransformationStrategyName.MULTIPLE_FIELDS.value: MultipleFieldsStrategy(),
    }


class TransformationRegistry:
    """Registry of named strategies with a single ``transform`` entry point."""

    def __init__(
        self,
        *,
        standardizer: ValueStandardizer | None = None,
        strategies: dict[str, TransformationStrategy] | None = None,
    ) -> None:
        self._standardizer = standardizer
        self._strategies = default_strategies()
        if strategies:
            self._strategies.update(strategies)

    def register(self, name: str, strategy: TransformationStrategy) -> None:
        self._strategies[name] = strategy

    @property
    def strategy_names(self) -> list[str]:
        return sorted(self._strategies)

    def transform(
        self,
        rule: TransformationRule,
        raw_answer: Any,
        subject_id: str,
        source_id: str,
        *,
        source_type: str = "manual_input",
        update_type: str = UpdateType.MANUAL.value,
        current_value: ProposedValue | str | None = None,
    ) -> list[ProposalDraft]:
        """Convert one answer under one rule into proposal drafts.

        Empty answers yield no drafts. Raises ``ConfigurationError`` for an
        unknown strategy or unusable rule and ``TransformationError`` for an
        answer that cannot be converted.
        """

        if is_empty_answer(raw_answer):
            return []
        strategy = self._strategies.get(rule.strategy)
        if strategy is None:
            raise UnknownStrategyError(
                f"Rule {rule.id}: unknown transformation strategy {rule.strategy!r}",
                rule_id=rule.id,
            )
        config = parse_strategy_config(rule)
        if isinstance(current_value, str):
            current_value = deserialize_value(current_value)
        context = TransformationContext(
            subject_id=subject_id,
            source_id=source_id,
            source_type=source_type,
            current_value=current_value,
            standardizer=self._standardizer,
        )
        field_proposals = strategy.build(rule, config, raw_answer, context)
        question = rule.question_text or rule.question_id
        source_label = _SOURCE_LABELS.get(source_type, source_type.replace("_", " ").capitalize())
        return [
            ProposalDraft(
                subject_id=subject_id,
                source_id=source_id,
                source_type=source_type,
                update_type=update_type,
                locator=item.locator,
                value=item.value,
                confidence=max(0.0, min(1.0, float(item.confidence))),
                reasoning=f"{source_label} ({item.method}): {question}",
                rule_id=rule.id,
                question_id=rule.question_id,
                priority=rule.priority if rule.priority is not None else 1,
                requires_approval=True if rule.requires_approval is None else bool(rule.requires_approval),
                conflict_resolution=rule.conflict_resolution or "NEWER_WINS",
                validation_rules=dict(rule.validation_rules_json or {}),
                auto_apply_after_hours=config.auto_apply_after_hours,
            )
            for item in field_proposals
        ]


def parse_strategy_config(rule: TransformationRule) -> StrategyConfig:
    try:
        return StrategyConfig.model_validate(rule.strategy_config_json or {})
    except ValidationError as exc:
        raise ConfigurationError(f"Rule {rule.id}: invalid strategy config: {exc}", rule_id=rule.id) from exc


def require_locator(rule: TransformationRule) -> TargetLocator:
    table = (rule.target_table or "").strip()
    field_name = (rule.target_field or "").strip()
    if not table or not field_name:
        raise ConfigurationError(f"Rule {rule.id}: target table and field are required", rule_id=rule.id)
    return TargetLocator(table=table, field=field_name)


def _cast_direct(answer: Any, transform_type: str) -> ProposedValue:
    if transform_type == "ARRAY":
        items = answer if isinstance(answer, (list, tuple)) else [answer]
        return StringArrayValue(tuple(str(item) for item in items))
    if transform_type == "NUMBER":
        return NumberValue(to_number(answer))
    if transform_type == "BOOLEAN":
        return BooleanValue(to_boolean(answer))
    if transform_type == "DATE":
        return TextValue(_to_iso_date(answer))
    if isinstance(answer, dict):
        return JsonObjectValue(dict(answer))
    if isinstance(answer, (list, tuple)):
        return TextValue(", ".join(str(item) for item in answer))
    return TextValue(str(answer))


def _to_iso_date(answer: Any) -> str:
    if isinstance(answer, datetime):
        return answer.isoformat()
    if isinstance(answer, date):
        return answer.isoformat()
    text = str(answer).strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        return datetime.fromisoformat(text).isoformat()


def _round_one_decimal(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _match_vocabulary(text: str, vocabulary: list[str]) -> str | None:
    lowered = text.strip().lower()
    for candidate in vocabulary:
        if candidate.strip().lower() == lowered:
            return candidate
    return None


def _within_vocabulary(value: ProposedValue, vocabulary: list[str]) -> bool:
    items = value.value if isinstance(value, StringArrayValue) else (str(value.value),)
    return all(_match_vocabulary(item, vocabulary) is not None for item in items)


def _delegate(
    rule: TransformationRule,
    config: StrategyConfig,
    answer: str | list[str],
    context: TransformationContext,
) -> tuple[ProposedValue, float] | None:
    if context.standardizer is None:
        return None
    try:
        result = context.standardizer.standardize(
            answer,
            vocabulary=config.standard_values,
            instruction=config.ai_prompt,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "transformation.standardize_degraded rule_id=%s subject_id=%s error_type=%s error=%s",
            rule.id,
            context.subject_id,
            type(exc).__name__,
            exc,
        )
        return None
    if is_empty_answer(result.value):
        return None
    if isinstance(result.value, (list, tuple)):
        value: ProposedValue = StringArrayValue(tuple(str(item) for item in result.value))
    else:
        text = str(result.value).strip()
        value = TextValue(_match_vocabulary(text, config.standard_values) or text)
    return value, min(STANDARDIZER_CONFIDENCE_CAP, max(0.0, float(result.confidence)))


def _merge_with_existing(current: ProposedValue | None, items: list[str], *, unique: bool) -> list[str]:
    if isinstance(current, StringArrayValue):
        existing = list(current.value)
    elif isinstance(current, TextValue) and current.value.strip():
        existing = [current.value.strip()]
    else:
        existing = []
    if not unique:
        return existing + items
    merged: list[str] = []
    seen: set[str] = set()
    for item in existing + items:
        key = item.lower()
        if key in seen:
            continue
        seen.add(key)
        merged.append(item)
    return merged
