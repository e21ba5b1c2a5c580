"""Tests for transformation strategies and the registry entry point."""

from __future__ import annotations

import unittest
from typing import Any

from profile_reconciler.errors import ConfigurationError, TransformationError, UnknownStrategyError
from profile_reconciler.models.transformation_rule import TransformationRule
from profile_reconciler.transformation.registry import FieldProposal, TransformationRegistry, TransformationStrategy
from profile_reconciler.transformation.standardizer import StandardizedValue
from profile_reconciler.transformation.types import TargetLocator
from profile_reconciler.transformation.values import (
    BooleanValue,
    NumberValue,
    StringArrayValue,
    TextValue,
    deserialize_value,
    serialize_value,
)


def _rule(strategy: str, config: dict[str, Any] | None = None, **overrides: Any) -> TransformationRule:
    values: dict[str, Any] = {
        "id": 7,
        "question_id": "q1",
        "question_text": "How do you feel?",
        "target_table": "students",
        "target_field": "mood",
        "strategy": strategy,
        "strategy_config_json": config or {},
        "validation_rules_json": {},
        "requires_approval": True,
        "priority": 2,
        "conflict_resolution": "NEWER_WINS",
        "is_active": True,
    }
    values.update(overrides)
    return TransformationRule(**values)


class _StubStandardizer:
    def __init__(self, result: StandardizedValue | None = None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def standardize(self, value: Any, *, vocabulary: list[str], instruction: str | None = None) -> StandardizedValue:
        self.calls.append({"value": value, "vocabulary": vocabulary, "instruction": instruction})
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


class DirectStrategyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = TransformationRegistry()

    def _single(self, rule: TransformationRule, answer: Any):
        drafts = self.registry.transform(rule, answer, "s1", "sub1", source_type="self_assessment")
        self.assertEqual(len(drafts), 1)
        return drafts[0]

    def test_direct_values_round_trip_under_declared_type(self) -> None:
        cases = [
            ("TEXT", "likes robotics", TextValue("likes robotics")),
            ("NUMBER", "42", NumberValue(42)),
            ("NUMBER", 3.5, NumberValue(3.5)),
            ("BOOLEAN", "evet", BooleanValue(True)),
            ("ARRAY", ["a", "b"], StringArrayValue(("a", "b"))),
            ("DATE", "2024-05-01", TextValue("2024-05-01")),
        ]
        for transform_type, answer, expected in cases:
            with self.subTest(transform_type=transform_type):
                draft = self._single(_rule("DIRECT", {"transformType": transform_type}), answer)
                self.assertEqual(draft.value, expected)
                self.assertEqual(draft.confidence, 1.0)
                restored = deserialize_value(serialize_value(draft.value), draft.value.kind)
                self.assertEqual(restored, expected)

    def test_draft_carries_rule_metadata(self) -> None:
        draft = self._single(_rule("DIRECT", requires_approval=False), "calm")
        self.assertEqual(draft.locator, TargetLocator("students", "mood"))
        self.assertEqual(draft.rule_id, 7)
        self.assertEqual(draft.question_id, "q1")
        self.assertEqual(draft.priority, 2)
        self.assertFalse(draft.requires_approval)
        self.assertEqual(draft.subject_id, "s1")
        self.assertEqual(draft.source_id, "sub1")
        self.assertIn("How do you feel?", draft.reasoning)

    def test_uncastable_answer_raises_transformation_error(self) -> None:
        with self.assertRaises(TransformationError):
            self.registry.transform(_rule("DIRECT", {"transformType": "NUMBER"}), "a lot", "s1", "sub1")
        with self.assertRaises(TransformationError):
            self.registry.transform(_rule("DIRECT", {"transformType": "DATE"}), "yesterday", "s1", "sub1")

    def test_grouped_thousands_are_not_read_as_decimals(self) -> None:
        rule = _rule("DIRECT", {"transformType": "NUMBER"})
        for answer in ("1,000", "1.000,5", "12,345,678"):
            with self.subTest(answer=answer):
                with self.assertRaises(TransformationError):
                    self.registry.transform(rule, answer, "s1", "sub1")
        self.assertEqual(self._single(rule, "1,5").value, NumberValue(1.5))


class ScaleAndArrayStrategyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = TransformationRegistry()

    def test_linear_scale_conversion(self) -> None:
        rule = _rule(
            "SCALE_CONVERT",
            {"sourceScale": {"min": 1, "max": 5}, "targetScale": {"min": 0, "max": 100}},
        )
        for answer, expected in ((3, 50.0), (1, 0.0), (5, 100.0), ("2", 25.0), (4, 75.0)):
            with self.subTest(answer=answer):
                [draft] = self.registry.transform(rule, answer, "s1", "sub1")
                self.assertAlmostEqual(draft.value.value, expected, delta=0.1)
                self.assertEqual(draft.confidence, 1.0)

    def test_scale_rounds_to_one_decimal(self) -> None:
        rule = _rule(
            "SCALE_CONVERT",
            {"source_scale": {"min": 1, "max": 4}, "target_scale": {"min": 0, "max": 10}},
        )
        [draft] = self.registry.transform(rule, 2, "s1", "sub1")
        self.assertEqual(draft.value, NumberValue(3.3))

    def test_scale_lookup_table(self) -> None:
        rule = _rule("SCALE_CONVERT", {"mapping": {"low": 1, "high": 3}})
        [draft] = self.registry.transform(rule, "high", "s1", "sub1")
        self.assertEqual(draft.value, NumberValue(3))
        with self.assertRaises(TransformationError):
            self.registry.transform(rule, "medium", "s1", "sub1")

    def test_scale_without_scales_or_mapping_is_a_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.registry.transform(_rule("SCALE_CONVERT", {}), 3, "s1", "sub1")
        with self.assertRaises(ConfigurationError):
            self.registry.transform(_rule("SCALE_CONVERT", {"sourceScale": {"min": 1, "max": 5}}), 3, "s1", "sub1")

    def test_array_merge_splits_and_trims(self) -> None:
        [draft] = self.registry.transform(_rule("ARRAY_MERGE", {"separator": ","}), "A, B ,C", "s1", "sub1")
        self.assertEqual(draft.value, StringArrayValue(("A", "B", "C")))
        self.assertEqual(draft.confidence, 1.0)

    def test_array_merge_drops_blank_items(self) -> None:
        [draft] = self.registry.transform(_rule("ARRAY_MERGE"), [" x ", "", "y"], "s1", "sub1")
        self.assertEqual(draft.value, StringArrayValue(("x", "y")))
        self.assertEqual(self.registry.transform(_rule("ARRAY_MERGE"), " , ,", "s1", "sub1"), [])

    def test_array_merge_unique_append_uses_current_value(self) -> None:
        rule = _rule("ARRAY_MERGE", {"mergeStrategy": "UNIQUE_APPEND", "separator": ";"})
        [draft] = self.registry.transform(rule, "chess; Guitar", "s1", "sub1", current_value='["Guitar"]')
        self.assertEqual(draft.value, StringArrayValue(("Guitar", "chess")))


class StandardizeStrategyTests(unittest.TestCase):
    config = {"standardValues": ["Mathematics", "Physics"]}

    def test_vocabulary_match_is_case_insensitive(self) -> None:
        registry = TransformationRegistry()
        [draft] = registry.transform(_rule("AI_STANDARDIZE", self.config), " mathematics ", "s1", "sub1")
        self.assertEqual(draft.value, TextValue("Mathematics"))
        self.assertEqual(draft.confidence, 0.9)

    def test_array_answers_keep_matched_items(self) -> None:
        registry = TransformationRegistry()
        [draft] = registry.transform(_rule("AI_STANDARDIZE", self.config), ["physics", "MATHEMATICS"], "s1", "sub1")
        self.assertEqual(draft.value, StringArrayValue(("Physics", "Mathematics")))
        self.assertEqual(draft.confidence, 0.9)

    def test_miss_without_standardizer_proposes_raw_value(self) -> None:
        registry = TransformationRegistry()
        [draft] = registry.transform(_rule("AI_STANDARDIZE", self.config), "maths", "s1", "sub1")
        self.assertEqual(draft.value, TextValue("maths"))
        self.assertEqual(draft.confidence, 0.5)

    def test_miss_is_delegated_with_capped_confidence(self) -> None:
        standardizer = _StubStandardizer(StandardizedValue(value="mathematics", confidence=0.95))
        registry = TransformationRegistry(standardizer=standardizer)
        rule = _rule("AI_STANDARDIZE", {**self.config, "aiPrompt": "Map school subjects."})
        [draft] = registry.transform(rule, "maths", "s1", "sub1")
        self.assertEqual(draft.value, TextValue("Mathematics"))
        self.assertEqual(draft.confidence, 0.75)
        self.assertEqual(standardizer.calls[0]["instruction"], "Map school subjects.")
        self.assertEqual(standardizer.calls[0]["vocabulary"], ["Mathematics", "Physics"])

    def test_standardizer_failure_falls_back_to_raw_value(self) -> None:
        registry = TransformationRegistry(standardizer=_StubStandardizer(error=TransformationError("bad output")))
        with self.assertLogs("profile_reconciler.transformation.registry", level="WARNING") as captured:
            [draft] = registry.transform(_rule("AI_STANDARDIZE", self.config), "maths", "s1", "sub1")
        self.assertEqual(draft.value, TextValue("maths"))
        self.assertEqual(draft.confidence, 0.5)
        self.assertIn("transformation.standardize_degraded", captured.output[0])

    def test_standardizer_network_error_falls_back_to_raw_value(self) -> None:
        registry = TransformationRegistry(
            standardizer=_StubStandardizer(error=ConnectionResetError("connection reset by peer"))
        )
        with self.assertLogs("profile_reconciler.transformation.registry", level="WARNING") as captured:
            [draft] = registry.transform(_rule("AI_STANDARDIZE", self.config), "maths", "s1", "sub1")
        self.assertEqual(draft.value, TextValue("maths"))
        self.assertEqual(draft.confidence, 0.5)
        self.assertIn("ConnectionResetError", captured.output[0])

    def test_closed_vocabulary_rejects_custom_values(self) -> None:
        registry = TransformationRegistry()
        with self.assertRaises(TransformationError):
            registry.transform(_rule("AI_STANDARDIZE", {**self.config, "allowCustom": False}), "maths", "s1", "sub1")


class MultipleFieldsAndRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = TransformationRegistry()

    def test_multiple_fields_fans_out_one_draft_per_mapping(self) -> None:
        rule = _rule(
            "MULTIPLE_FIELDS",
            {
                "mappings": [
                    {"field": "summary", "extractFrom": "full_text"},
                    {"field": "category", "table": "standardized_talents_interests_profile", "parseWithAI": True},
                ]
            },
            target_table=None,
            target_field=None,
        )
        drafts = self.registry.transform(rule, "I build robots after school.", "s1", "sub1")

        self.assertEqual([draft.locator.path for draft in drafts], [
            "students.summary",
            "standardized_talents_interests_profile.category",
        ])
        self.assertEqual([draft.confidence for draft in drafts], [1.0, 0.85])
        self.assertTrue(all(draft.value == TextValue("I build robots after school.") for draft in drafts))
        self.assertEqual({draft.source_id for draft in drafts}, {"sub1"})

    def test_multiple_fields_extracts_keys_from_structured_answers(self) -> None:
        rule = _rule(
            "MULTIPLE_FIELDS",
            {"mappings": [{"field": "city", "extractFrom": "city"}, {"field": "zip", "extractFrom": "zip"}]},
        )
        drafts = self.registry.transform(rule, {"city": "Izmir", "zip": ""}, "s1", "sub1")
        self.assertEqual(len(drafts), 1)
        self.assertEqual(drafts[0].locator, TargetLocator("students", "city"))

    def test_multiple_fields_requires_mappings(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.registry.transform(_rule("MULTIPLE_FIELDS", {}), "text", "s1", "sub1")

    def test_empty_answers_produce_no_drafts(self) -> None:
        for answer in (None, "", "   ", [], {}):
            with self.subTest(answer=answer):
                self.assertEqual(self.registry.transform(_rule("DIRECT"), answer, "s1", "sub1"), [])

    def test_unknown_strategy_raises(self) -> None:
        with self.assertRaises(UnknownStrategyError) as ctx:
            self.registry.transform(_rule("TELEPATHY"), "x", "s1", "sub1")
        self.assertEqual(ctx.exception.rule_id, 7)

    def test_missing_locator_raises_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.registry.transform(_rule("DIRECT", target_field=None), "x", "s1", "sub1")

    def test_invalid_config_raises_configuration_error(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.registry.transform(_rule("DIRECT", {"transformType": "VIDEO"}), "x", "s1", "sub1")

    def test_custom_strategy_can_be_registered(self) -> None:
        class _UpperStrategy(TransformationStrategy):
            def build(self, rule, config, answer, context):  # noqa: ANN001, ANN201
                return [
                    FieldProposal(
                        locator=TargetLocator(rule.target_table, rule.target_field),
                        value=TextValue(str(answer).upper()),
                        confidence=0.6,
                        method="upper",
                    )
                ]

        self.registry.register("UPPER", _UpperStrategy())
        [draft] = self.registry.transform(_rule("UPPER"), "calm", "s1", "sub1")
        self.assertEqual(draft.value, TextValue("CALM"))
        self.assertIn("UPPER", self.registry.strategy_names)


if __name__ == "__main__":
    unittest.main()
