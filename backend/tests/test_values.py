"""Tests for typed proposed values and their stored string form."""

from __future__ import annotations

import json
import unittest

from profile_reconciler.transformation.values import (
    BooleanValue,
    JsonObjectValue,
    NumberValue,
    StringArrayValue,
    TextValue,
    coerce_to_kind,
    deserialize_value,
    is_empty_answer,
    serialize_value,
    to_boolean,
    to_number,
)


class ValueSerializationTests(unittest.TestCase):
    def test_composite_values_are_stored_as_parseable_json(self) -> None:
        array_raw = serialize_value(StringArrayValue(("Chess", "Guitar")))
        object_raw = serialize_value(JsonObjectValue({"b": 1, "a": "x"}))

        self.assertEqual(json.loads(array_raw), ["Chess", "Guitar"])
        self.assertEqual(json.loads(object_raw), {"a": "x", "b": 1})
        self.assertEqual(object_raw, '{"a": "x", "b": 1}')

    def test_scalars_use_plain_forms(self) -> None:
        self.assertEqual(serialize_value(TextValue("hello")), "hello")
        self.assertEqual(serialize_value(NumberValue(50.0)), "50.0")
        self.assertEqual(serialize_value(BooleanValue(False)), "false")

    def test_deserialize_with_kind_restores_value(self) -> None:
        self.assertEqual(deserialize_value("42", "number"), NumberValue(42))
        self.assertEqual(deserialize_value("true", "boolean"), BooleanValue(True))
        self.assertEqual(deserialize_value('["A","B"]', "string_array"), StringArrayValue(("A", "B")))
        self.assertEqual(deserialize_value("42", "text"), TextValue("42"))

    def test_unparseable_input_is_kept_as_opaque_text(self) -> None:
        self.assertEqual(deserialize_value("{not json", "json_object"), TextValue("{not json"))
        self.assertEqual(deserialize_value("plain words"), TextValue("plain words"))
        self.assertEqual(deserialize_value('"quoted"', "number"), TextValue('"quoted"'))
        self.assertIsNone(deserialize_value(None))

    def test_deserialize_without_kind_types_by_shape(self) -> None:
        self.assertEqual(deserialize_value("3.5"), NumberValue(3.5))
        self.assertEqual(deserialize_value('{"k": "v"}'), JsonObjectValue({"k": "v"}))
        self.assertEqual(deserialize_value("null"), TextValue("null"))


class ValueCoercionTests(unittest.TestCase):
    def test_to_number(self) -> None:
        self.assertEqual(to_number("3"), 3)
        self.assertIsInstance(to_number("3"), int)
        self.assertEqual(to_number(" 2,5 "), 2.5)
        self.assertEqual(to_number(7.25), 7.25)
        self.assertEqual(to_number("-1,25"), -1.25)
        for bad in ("", "abc", True, float("nan"), "inf", None, "1,000", "1.000,5", "1,2,3"):
            with self.subTest(value=bad):
                with self.assertRaises(ValueError):
                    to_number(bad)

    def test_to_boolean(self) -> None:
        self.assertTrue(to_boolean("Yes"))
        self.assertTrue(to_boolean("evet"))
        self.assertFalse(to_boolean("0"))
        self.assertFalse(to_boolean(False))
        with self.assertRaises(ValueError):
            to_boolean("maybe")

    def test_coerce_to_kind(self) -> None:
        self.assertEqual(coerce_to_kind("x", "string_array"), StringArrayValue(("x",)))
        self.assertEqual(coerce_to_kind({"a": 1}, "text"), TextValue('{"a": 1}'))
        with self.assertRaises(ValueError):
            coerce_to_kind([1], "json_object")
        with self.assertRaises(ValueError):
            coerce_to_kind("x", "unknown")

    def test_is_empty_answer(self) -> None:
        for empty in (None, "", "   ", [], {}, ()):
            with self.subTest(value=empty):
                self.assertTrue(is_empty_answer(empty))
        for present in (0, False, "a", [""], {"k": None}):
            with self.subTest(value=present):
                self.assertFalse(is_empty_answer(present))


if __name__ == "__main__":
    unittest.main()
