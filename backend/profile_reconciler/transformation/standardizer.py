"""AI-assisted standardization of free-form answers onto a closed vocabulary."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

from profile_reconciler.errors import TransformationError
from profile_reconciler.validation.judgement import NarrativeJudge, strip_code_fence


@dataclass(slots=True)
class StandardizedValue:
    value: Any
    confidence: float


class ValueStandardizer(Protocol):
    """Protocol for standardization capabilities.

    Implementations must be side-effect free and return the same result for
    identical input.
    """

    def standardize(
        self,
        value: Any,
        *,
        vocabulary: list[str],
        instruction: str | None = None,
    ) -> StandardizedValue:
        """Return the standardized value and a 0..1 confidence."""


class _RawStandardization(BaseModel):
    value: str | list[str]
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)


class LLMValueStandardizer:
    """Standardizer that asks the narrative judge to map a value onto a vocabulary."""

    def __init__(self, judge: NarrativeJudge) -> None:
        self._judge = judge

    def standardize(
        self,
        value: Any,
        *,
        vocabulary: list[str],
        instruction: str | None = None,
    ) -> StandardizedValue:
        prompt = json.dumps(
            {
                "task": "Map the answer onto the allowed vocabulary. Keep the meaning; do not add information.",
                "instruction": instruction,
                "answer": value,
                "vocabulary": vocabulary,
                "response_format": {
                    "value": "string or array of strings, using vocabulary entries when any fits",
                    "confidence": "number between 0 and 1",
                },
            },
            ensure_ascii=False,
        )
        raw = self._judge.judge(prompt)
        if not isinstance(raw, str):
            raise TransformationError(f"Standardization output is {type(raw).__name__}, not text")
        try:
            parsed = _RawStandardization.model_validate_json(strip_code_fence(raw))
        except ValidationError as exc:
            raise TransformationError(f"Standardization output failed validation: {exc}") from exc
        return StandardizedValue(value=parsed.value, confidence=parsed.confidence)
