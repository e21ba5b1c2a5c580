"""Tests for draft validation, conflict detection and the judge clients."""

from __future__ import annotations

import json
import unittest
from unittest import mock
from http import client as http_client
from urllib import error as urllib_error

from profile_reconciler.errors import TransformationError, ValidationDegraded
from profile_reconciler.transformation.standardizer import LLMValueStandardizer
from profile_reconciler.transformation.types import ProposalDraft, TargetLocator
from profile_reconciler.transformation.values import (
    JsonObjectValue,
    NumberValue,
    ProposedValue,
    StringArrayValue,
    TextValue,
)
from profile_reconciler.validation.engine import ValidationEngine
from profile_reconciler.validation.judgement import OpenAIChatCompletionsJudge, strip_code_fence

_JUDGE_REPLY = {
    "isValid": True,
    "confidence": 85,
    "reasoning": "Consistent with earlier notes.",
    "suggestedDomains": ["motivation"],
    "conflicts": [],
    "recommendations": ["Follow up next term."],
}


class _StubJudge:
    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    def judge(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        assert self.reply is not None
        return self.reply


class _SilentJudge:
    def judge(self, prompt: str) -> None:
        return None


def _draft(
    value: ProposedValue = TextValue("curious"),
    *,
    source_type: str = "self_assessment",
    validation_rules: dict | None = None,
    confidence: float = 1.0,
) -> ProposalDraft:
    return ProposalDraft(
        subject_id="s1",
        source_id="sub1",
        source_type=source_type,
        update_type="SELF_REPORTED",
        locator=TargetLocator("students", "trait"),
        value=value,
        confidence=confidence,
        reasoning="Self-report (direct): Describe yourself",
        rule_id=3,
        validation_rules=validation_rules or {},
    )


class ValidateTests(unittest.TestCase):
    def test_judge_output_is_used_when_it_parses(self) -> None:
        judge = _StubJudge(json.dumps(_JUDGE_REPLY))
        result = ValidationEngine(judge).validate(_draft(), {"students.trait": "curious", "students.name": "Ada"})

        self.assertTrue(result.is_valid)
        self.assertEqual(result.confidence, 85)
        self.assertEqual(result.suggested_domains, ["motivation"])
        self.assertFalse(result.degraded)
        self.assertEqual(result.conflicts, [])
        prompt = json.loads(judge.prompts[0])
        self.assertEqual(prompt["target"], "students.trait")
        self.assertEqual(prompt["profile_excerpt"]["students.name"], "Ada")

    def test_fenced_judge_output_is_accepted(self) -> None:
        judge = _StubJudge("```json\n" + json.dumps({**_JUDGE_REPLY, "confidence": 70}) + "\n```")
        result = ValidationEngine(judge).validate(_draft())
        self.assertEqual(result.confidence, 70)
        self.assertFalse(result.degraded)

    def test_judge_conflicts_are_surfaced(self) -> None:
        reply = {
            **_JUDGE_REPLY,
            "conflicts": [
                {"existingValue": "shy", "newValue": "outgoing", "severity": "high", "resolutionSuggestion": "Ask."}
            ],
        }
        result = ValidationEngine(_StubJudge(json.dumps(reply))).validate(_draft(TextValue("outgoing")))
        self.assertEqual(len(result.conflicts), 1)
        self.assertEqual(result.conflicts[0].severity, "high")
        self.assertEqual(result.conflicts[0].existing_value, "shy")

    def test_outage_falls_back_to_source_table(self) -> None:
        judge = _StubJudge(error=ValidationDegraded("timeout"))
        with self.assertLogs("profile_reconciler.validation.engine", level="WARNING") as captured:
            result = ValidationEngine(judge).validate(_draft())
        self.assertTrue(result.is_valid)
        self.assertEqual(result.confidence, 60)
        self.assertTrue(result.degraded)
        self.assertEqual(result.suggested_domains, ["motivation", "social_emotional"])
        self.assertIn("validation.judge_unavailable", captured.output[0])

    def test_unexpected_judge_errors_fall_back(self) -> None:
        for error in (ConnectionResetError("connection reset by peer"), OSError("network down"), RuntimeError("boom")):
            with self.subTest(error=type(error).__name__):
                with self.assertLogs("profile_reconciler.validation.engine", level="WARNING") as captured:
                    result = ValidationEngine(_StubJudge(error=error)).validate(_draft(), {})
                self.assertTrue(result.is_valid)
                self.assertEqual(result.confidence, 60)
                self.assertTrue(result.degraded)
                self.assertIn("validation.judge_unavailable", captured.output[0])

    def test_non_text_judge_reply_is_treated_as_unparseable(self) -> None:
        with self.assertLogs("profile_reconciler.validation.engine", level="WARNING") as captured:
            result = ValidationEngine(_SilentJudge()).validate(_draft(), {})
        self.assertTrue(result.is_valid)
        self.assertEqual(result.confidence, 50)
        self.assertIn("validation.judge_unparseable", captured.output[0])

    def test_outage_for_unknown_source_uses_lower_confidence(self) -> None:
        judge = _StubJudge(error=ValidationDegraded("down"))
        with self.assertLogs("profile_reconciler.validation.engine", level="WARNING"):
            result = ValidationEngine(judge).validate(_draft(source_type="carrier_pigeon"))
        self.assertEqual(result.confidence, 50)
        self.assertTrue(result.is_valid)

    def test_malformed_output_falls_back(self) -> None:
        for reply in ("Sure! The value looks fine.", '{"isValid": true, "confidence": 400}', "{}"):
            with self.subTest(reply=reply):
                with self.assertLogs("profile_reconciler.validation.engine", level="WARNING"):
                    result = ValidationEngine(_StubJudge(reply)).validate(_draft())
                self.assertEqual(result.confidence, 50)
                self.assertTrue(result.is_valid)
                self.assertTrue(result.degraded)

    def test_without_judge_uses_fallback(self) -> None:
        result = ValidationEngine().validate(_draft(source_type="exam_result"))
        self.assertEqual(result.confidence, 60)
        self.assertEqual(result.suggested_domains, ["academic"])

    def test_deterministic_failures_skip_the_judge(self) -> None:
        judge = _StubJudge(json.dumps(_JUDGE_REPLY))
        result = ValidationEngine(judge).validate(_draft(NumberValue(14), validation_rules={"min": 1, "max": 12}))
        self.assertFalse(result.is_valid)
        self.assertEqual(result.confidence, 0.0)
        self.assertIn("maximum", result.reasoning)
        self.assertEqual(judge.prompts, [])

    def test_text_rules(self) -> None:
        engine = ValidationEngine()
        rules = {"minLength": 2, "maxLength": 5, "pattern": "[a-z]+", "enum": ["calm", "busy"]}
        self.assertTrue(engine.validate(_draft(TextValue("calm"), validation_rules=rules)).is_valid)
        for bad in ("c", "Calmly", "CALM", "quiet"):
            with self.subTest(value=bad):
                self.assertFalse(engine.validate(_draft(TextValue(bad), validation_rules=rules)).is_valid)

    def test_required_and_confidence_bounds(self) -> None:
        engine = ValidationEngine()
        self.assertFalse(engine.validate(_draft(TextValue(" "), validation_rules={"required": True})).is_valid)
        self.assertFalse(engine.validate(_draft(confidence=1.5)).is_valid)

    def test_stored_value_conflict_is_reported(self) -> None:
        result = ValidationEngine().validate(_draft(NumberValue(90)), {"students.trait": "40"})
        self.assertEqual(len(result.conflicts), 1)
        self.assertEqual(result.conflicts[0].severity, "high")
        self.assertEqual(result.conflicts[0].existing_value, "40")


class DetectConflictsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = ValidationEngine()
        self.locator = TargetLocator("standardized_academic_profile", "math_score")

    def _severity(self, new: ProposedValue, existing) -> str | None:  # noqa: ANN001
        conflicts = self.engine.detect_conflicts(self.locator, new, existing)
        return conflicts[0].severity if conflicts else None

    def test_empty_or_equal_existing_values_do_not_conflict(self) -> None:
        self.assertIsNone(self._severity(NumberValue(80), None))
        self.assertIsNone(self._severity(TextValue("x"), ""))
        self.assertIsNone(self._severity(NumberValue(80), "80"))
        self.assertIsNone(self._severity(TextValue("Calm"), "calm"))
        self.assertIsNone(self._severity(StringArrayValue(("a", "b")), '["b", "a"]'))

    def test_numeric_divergence_grades_severity(self) -> None:
        self.assertEqual(self._severity(NumberValue(105), "100"), "low")
        self.assertEqual(self._severity(NumberValue(130), "100"), "medium")
        self.assertEqual(self._severity(NumberValue(200), "100"), "high")
        self.assertEqual(self._severity(NumberValue(5), NumberValue(0)), "high")

    def test_kind_mismatch_is_high(self) -> None:
        self.assertEqual(self._severity(NumberValue(3), "three"), "high")
        self.assertEqual(self._severity(JsonObjectValue({"a": 1}), '["a"]'), "high")

    def test_text_and_array_changes(self) -> None:
        self.assertEqual(self._severity(TextValue("high"), "low"), "medium")
        self.assertEqual(self._severity(StringArrayValue(("a", "b")), '["a"]'), "low")
        self.assertEqual(self._severity(StringArrayValue(("b",)), '["a"]'), "medium")
        self.assertEqual(self._severity(JsonObjectValue({"a": 2}), '{"a": 1}'), "medium")

    def test_conflict_carries_locator_policy_and_peer(self) -> None:
        [conflict] = self.engine.detect_conflicts(
            self.locator,
            TextValue("high"),
            TextValue("low"),
            policy="MERGE",
            conflicting_proposal_id=12,
        )
        self.assertEqual(conflict.target_locator, "standardized_academic_profile.math_score")
        self.assertEqual(conflict.existing_value, "low")
        self.assertEqual(conflict.new_value, "high")
        self.assertEqual(conflict.conflicting_proposal_id, 12)
        self.assertIn("Combine", conflict.resolution_suggestion)
        self.assertEqual(conflict.to_json()["conflicting_proposal_id"], 12)


class JudgeClientTests(unittest.TestCase):
    def test_strip_code_fence(self) -> None:
        self.assertEqual(strip_code_fence('```json\n{"a": 1}\n```'), '{"a": 1}')
        self.assertEqual(strip_code_fence('  {"a": 1} '), '{"a": 1}')

    def test_network_errors_become_validation_degraded(self) -> None:
        judge = OpenAIChatCompletionsJudge(api_key="test", model="test-model", timeout_seconds=1)
        with mock.patch(
            "profile_reconciler.validation.judgement.urllib_request.urlopen",
            side_effect=urllib_error.URLError("connection refused"),
        ):
            with self.assertRaises(ValidationDegraded):
                judge.judge("{}")

    def test_unexpected_envelope_becomes_validation_degraded(self) -> None:
        response = mock.MagicMock()
        response.__enter__.return_value.read.return_value = b'{"choices": []}'
        judge = OpenAIChatCompletionsJudge(api_key="test", model="test-model")
        with mock.patch("profile_reconciler.validation.judgement.urllib_request.urlopen", return_value=response):
            with self.assertRaises(ValidationDegraded):
                judge.judge("{}")

    def test_broken_response_body_becomes_validation_degraded(self) -> None:
        judge = OpenAIChatCompletionsJudge(api_key="test", model="test-model")
        for error in (ConnectionResetError("connection reset by peer"), http_client.IncompleteRead(b"{\"cho")):
            with self.subTest(error=type(error).__name__):
                response = mock.MagicMock()
                response.__enter__.return_value.read.side_effect = error
                with mock.patch(
                    "profile_reconciler.validation.judgement.urllib_request.urlopen",
                    return_value=response,
                ):
                    with self.assertRaises(ValidationDegraded):
                        judge.judge("{}")

    def test_undecodable_response_body_becomes_validation_degraded(self) -> None:
        response = mock.MagicMock()
        response.__enter__.return_value.read.return_value = b"\xff\xfe\xfa"
        judge = OpenAIChatCompletionsJudge(api_key="test", model="test-model")
        with mock.patch("profile_reconciler.validation.judgement.urllib_request.urlopen", return_value=response):
            with self.assertRaises(ValidationDegraded):
                judge.judge("{}")

    def test_message_content_is_returned(self) -> None:
        response = mock.MagicMock()
        response.__enter__.return_value.read.return_value = json.dumps(
            {"choices": [{"message": {"content": '{"isValid": true}'}}]}
        ).encode("utf-8")
        judge = OpenAIChatCompletionsJudge(api_key="test", model="test-model")
        with mock.patch(
            "profile_reconciler.validation.judgement.urllib_request.urlopen",
            return_value=response,
        ) as urlopen:
            self.assertEqual(judge.judge("{}"), '{"isValid": true}')
        request = urlopen.call_args.args[0]
        payload = json.loads(request.data.decode("utf-8"))
        self.assertEqual(payload["model"], "test-model")
        self.assertEqual(payload["response_format"], {"type": "json_object"})
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 20)


class StandardizerTests(unittest.TestCase):
    def test_parses_judge_reply(self) -> None:
        judge = _StubJudge('```json\n{"value": "Mathematics", "confidence": 0.8}\n```')
        result = LLMValueStandardizer(judge).standardize("maths", vocabulary=["Mathematics"])
        self.assertEqual(result.value, "Mathematics")
        self.assertEqual(result.confidence, 0.8)
        self.assertEqual(json.loads(judge.prompts[0])["vocabulary"], ["Mathematics"])

    def test_invalid_reply_raises_transformation_error(self) -> None:
        with self.assertRaises(TransformationError):
            LLMValueStandardizer(_StubJudge("no idea")).standardize("maths", vocabulary=["Mathematics"])

    def test_non_text_reply_raises_transformation_error(self) -> None:
        with self.assertRaises(TransformationError):
            LLMValueStandardizer(_SilentJudge()).standardize("maths", vocabulary=["Mathematics"])


if __name__ == "__main__":
    unittest.main()
