import unittest

from shelfwarden.core.criteria import (
    criteria_complexity,
    ensure_valid,
    is_legacy_criteria,
    migrate_legacy_criteria,
    parse_criteria,
    validate_criteria,
)
from shelfwarden.core.errors import RuleValidationError
from shelfwarden.models.schemas import ConditionGroup, MediaType


def condition(field, operator, value=None, unit=None):
    node = {"type": "condition", "field": field, "operator": operator, "value": value}
    if unit is not None:
        node["value_unit"] = unit
    return node


def group(*children, operator="AND"):
    return {"type": "group", "operator": operator, "conditions": list(children)}


class TestParseCriteria(unittest.TestCase):
    def test_parses_nested_groups(self):
        criteria = parse_criteria(
            group(
                condition("neverWatched", "equals", True),
                group(
                    condition("fileSize", "greaterThan", 10, "GB"),
                    condition("resolution", "lessThanOrEqual", "720"),
                    operator="OR",
                ),
            )
        )

        self.assertIsInstance(criteria, ConditionGroup)
        self.assertEqual(criteria.operator, "AND")
        self.assertIsInstance(criteria.conditions[1], ConditionGroup)
        self.assertEqual(criteria.conditions[1].conditions[0].value_unit, "GB")

    def test_assigns_node_ids_when_missing(self):
        criteria = parse_criteria(group(condition("playCount", "equals", 0)))

        self.assertTrue(criteria.id)
        self.assertTrue(criteria.conditions[0].id)

    def test_root_condition_is_rejected(self):
        with self.assertRaises(RuleValidationError) as ctx:
            parse_criteria(condition("playCount", "equals", 0))

        self.assertIn("root", ctx.exception.errors[0])

    def test_bad_group_operator_is_reported(self):
        with self.assertRaises(RuleValidationError) as ctx:
            parse_criteria({"type": "group", "operator": "XOR", "conditions": []})

        self.assertTrue(any("operator" in message for message in ctx.exception.errors))

    def test_non_object_is_rejected(self):
        with self.assertRaises(RuleValidationError):
            parse_criteria(["neverWatched"])


class TestValidateCriteria(unittest.TestCase):
    def errors_for(self, raw, media_type=MediaType.MOVIE):
        return validate_criteria(parse_criteria(raw), media_type)

    def test_valid_criteria_has_no_errors(self):
        errors = self.errors_for(
            group(
                condition("lastWatchedAt", "olderThan", 6, "months"),
                condition("labels", "containsAny", ["kids", "archive"]),
                condition("rating", "isNull"),
            )
        )

        self.assertEqual(errors, [])

    def test_empty_group_is_invalid(self):
        errors = self.errors_for(group(condition("playCount", "equals", 0), group()))

        self.assertEqual(errors, ["root.conditions[1]: group must contain at least one condition"])

    def test_unknown_field_and_bad_operator_report_every_problem(self):
        errors = self.errors_for(
            group(
                condition("audioLanguage", "greaterThan", 5),
                condition("fileSize", "equals", 1, "GB"),
            )
        )

        self.assertEqual(len(errors), 2)
        self.assertIn("root.conditions[0]: unknown field 'audioLanguage'", errors)
        self.assertIn("not supported", errors[1])

    def test_field_not_applicable_to_media_type(self):
        errors = self.errors_for(group(condition("seasonNumber", "equals", 1)))

        self.assertEqual(len(errors), 1)
        self.assertIn("does not apply to MOVIE", errors[0])
        self.assertEqual(
            self.errors_for(group(condition("seasonNumber", "equals", 1)), MediaType.EPISODE),
            [],
        )

    def test_rating_out_of_range(self):
        errors = self.errors_for(group(condition("rating", "greaterThan", 11)))

        self.assertEqual(errors, ["root.conditions[0]: 'rating' must be <= 10"])

    def test_rating_bounds_are_inclusive(self):
        self.assertEqual(self.errors_for(group(condition("rating", "greaterThanOrEqual", 0))), [])
        self.assertEqual(self.errors_for(group(condition("rating", "lessThanOrEqual", 10))), [])

    def test_negative_play_count(self):
        errors = self.errors_for(group(condition("playCount", "lessThan", -1)))

        self.assertEqual(errors, ["root.conditions[0]: 'playCount' must be >= 0"])

    def test_date_field_requires_unit(self):
        errors = self.errors_for(group(condition("addedAt", "olderThan", 90)))

        self.assertEqual(len(errors), 1)
        self.assertIn("requires a unit", errors[0])

    def test_unit_not_accepted_for_field(self):
        errors = self.errors_for(group(condition("playCount", "equals", 1, "GB")))

        self.assertIn("does not accept a unit", errors[0])

    def test_unsupported_unit(self):
        errors = self.errors_for(group(condition("fileSize", "greaterThan", 1, "PB")))

        self.assertIn("unsupported unit 'PB'", errors[0])

    def test_list_operator_requires_non_empty_list(self):
        errors = self.errors_for(group(condition("genres", "containsAll", [])))

        self.assertIn("requires a non-empty list", errors[0])

    def test_scalar_operator_rejects_list(self):
        errors = self.errors_for(group(condition("title", "contains", ["a"])))

        self.assertIn("does not accept a list", errors[0])

    def test_unknown_resolution(self):
        errors = self.errors_for(group(condition("resolution", "equals", "8k")))

        self.assertIn("unknown resolution '8k'", errors[0])

    def test_missing_value(self):
        errors = self.errors_for(group(condition("neverWatched", "equals")))

        self.assertIn("value is required", errors[0])

    def test_boolean_field_rejects_numbers(self):
        errors = self.errors_for(group(condition("neverWatched", "equals", 1)))

        self.assertIn("requires a boolean", errors[0])

    def test_nested_error_paths(self):
        errors = self.errors_for(
            group(
                condition("playCount", "equals", 0),
                group(condition("neverWatched", "equals", True), condition("year", "equals", "x")),
            )
        )

        self.assertEqual(len(errors), 1)
        self.assertTrue(errors[0].startswith("root.conditions[1].conditions[1]:"))

    def test_ensure_valid_raises_with_all_messages(self):
        with self.assertRaises(RuleValidationError) as ctx:
            ensure_valid(
                group(condition("audioLanguage", "equals", 1), condition("rating", "lessThan", 20)),
                MediaType.MOVIE,
            )

        self.assertEqual(len(ctx.exception.errors), 2)


class TestLegacyCriteria(unittest.TestCase):
    def test_detection(self):
        self.assertTrue(is_legacy_criteria({"neverWatched": True}))
        self.assertTrue(is_legacy_criteria({}))
        self.assertFalse(is_legacy_criteria(group(condition("playCount", "equals", 0))))

    def test_migration_converts_each_legacy_key(self):
        migrated = migrate_legacy_criteria(
            {
                "neverWatched": True,
                "lastWatchedBefore": {"value": 6, "unit": "months"},
                "maxPlayCount": 2,
                "minFileSize": {"value": 10, "unit": "GB"},
                "maxQuality": "720",
                "libraryIds": ["1", "2"],
                "tags": ["archive"],
                "operator": "OR",
            }
        )

        self.assertEqual(migrated["operator"], "OR")
        by_field = {node["field"]: node for node in migrated["conditions"]}
        self.assertEqual(by_field["neverWatched"]["value"], True)
        self.assertEqual(by_field["lastWatchedAt"]["operator"], "olderThan")
        self.assertEqual(by_field["lastWatchedAt"]["value_unit"], "months")
        self.assertEqual(by_field["playCount"]["operator"], "lessThanOrEqual")
        self.assertEqual(by_field["fileSize"]["value"], 10 * 1024**3)
        self.assertEqual(by_field["resolution"]["value"], "720")
        self.assertEqual(by_field["libraryId"]["operator"], "in")
        self.assertEqual(by_field["labels"]["operator"], "containsAny")

    def test_empty_legacy_defaults_to_never_watched(self):
        criteria = parse_criteria({})

        self.assertEqual(len(criteria.conditions), 1)
        self.assertEqual(criteria.conditions[0].field, "neverWatched")
        self.assertIs(criteria.conditions[0].value, True)

    def test_submitted_legacy_criteria_without_conditions_is_rejected(self):
        for raw in ({}, {"operator": "AND"}):
            with self.subTest(raw=raw):
                with self.assertRaises(RuleValidationError) as ctx:
                    ensure_valid(raw, MediaType.MOVIE)
                self.assertEqual(
                    ctx.exception.errors, ["criteria: at least one condition is required"]
                )

    def test_migrated_criteria_validates(self):
        criteria = ensure_valid(
            {"neverWatched": True, "addedBefore": {"value": 1, "unit": "years"}},
            MediaType.MOVIE,
        )

        self.assertEqual([c.field for c in criteria.conditions], ["neverWatched", "addedAt"])


class TestCriteriaComplexity(unittest.TestCase):
    def test_simple(self):
        result = criteria_complexity(parse_criteria(group(condition("playCount", "equals", 0))))

        self.assertEqual(result.condition_count, 1)
        self.assertEqual(result.group_count, 1)
        self.assertEqual(result.max_depth, 1)
        self.assertEqual(result.complexity, "simple")

    def test_moderate_by_depth(self):
        nested = group(condition("playCount", "equals", 0), group(group(condition("year", "lessThan", 2000))))

        result = criteria_complexity(parse_criteria(nested))

        self.assertEqual(result.max_depth, 3)
        self.assertEqual(result.complexity, "moderate")

    def test_complex_by_condition_count(self):
        many = group(*[condition("playCount", "equals", i) for i in range(11)])

        self.assertEqual(criteria_complexity(parse_criteria(many)).complexity, "complex")


if __name__ == "__main__":
    unittest.main()
