"""Tests for the pure mapping engine: transforms, coercion and record mapping."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from care_ingestion.domain.types import FieldMapping, FieldType
from care_ingestion.mapping.engine import apply_mapping, apply_transform, coerce_from_string


class TestTransforms:
    @pytest.mark.parametrize("name, value, expected", [
        ("strip", "  Thompson ", "Thompson"),
        ("trim", " Ward 3", "Ward 3"),
        ("upper", "qq123456c", "QQ123456C"),
        ("lower", "ASSET", "asset"),
        ("to_decimal", "£1,050.00", Decimal("1050.00")),
        ("normalize_date", "14/03/1938", "1938-03-14"),
    ])
    def test_known_transforms(self, name, value, expected):
        assert apply_transform(value, name) == expected

    def test_unknown_or_empty_transform_is_identity(self):
        assert apply_transform("Margaret", "titlecase") == "Margaret"
        assert apply_transform("Margaret", None) == "Margaret"
        assert apply_transform(None, "strip") is None

    def test_unparseable_values_pass_through(self):
        assert apply_transform("n/a", "to_decimal") == "n/a"
        assert apply_transform("sometime in May", "normalize_date") == "sometime in May"

    def test_normalize_date_accepts_datetimes(self):
        assert apply_transform(datetime(2025, 1, 6, 14, 30), "normalize_date") == "2025-01-06"


class TestCoercion:
    def test_string_is_stripped(self):
        result = coerce_from_string("  Room 12 ", FieldType.STRING)
        assert result.success and result.value == "Room 12"

    def test_empty_typed_value_is_missing(self):
        result = coerce_from_string(" ", FieldType.DECIMAL)
        assert not result.success
        assert result.error.code == "MISSING_VALUE"

    def test_integer(self):
        assert coerce_from_string("3.0", FieldType.INTEGER).value == 3
        assert coerce_from_string("3.5", FieldType.INTEGER).error.code == "INVALID_INTEGER"
        assert coerce_from_string("three", FieldType.INTEGER).error.code == "INVALID_INTEGER"

    def test_decimal(self):
        assert coerce_from_string("£2,400.50", FieldType.DECIMAL).value == Decimal("2400.50")
        assert coerce_from_string(Decimal("12.5"), FieldType.DECIMAL).value == Decimal("12.5")
        assert coerce_from_string("twelve", FieldType.DECIMAL).error.code == "INVALID_DECIMAL"

    def test_date_formats(self):
        assert coerce_from_string("2025-01-06", FieldType.DATE).value == date(2025, 1, 6)
        assert coerce_from_string("06/01/2025", FieldType.DATE).value == date(2025, 1, 6)
        assert coerce_from_string("06.01.2025", FieldType.DATE).value == date(2025, 1, 6)
        assert coerce_from_string("Jan 6 2025", FieldType.DATE, "%b %d %Y").value == date(2025, 1, 6)
        assert coerce_from_string("6th January", FieldType.DATE).error.code == "INVALID_DATE_FORMAT"

    def test_date_objects_pass_through(self):
        assert coerce_from_string(date(2025, 1, 6), FieldType.DATE).value == date(2025, 1, 6)
        assert coerce_from_string(datetime(2025, 1, 6, 8), FieldType.DATE).value == date(2025, 1, 6)

    @pytest.mark.parametrize("text, expected", [
        ("Yes", True), ("y", True), ("1", True), ("ON", True),
        ("no", False), ("N", False), ("0", False), ("off", False),
    ])
    def test_boolean(self, text, expected):
        assert coerce_from_string(text, FieldType.BOOLEAN).value is expected

    def test_boolean_rejects_other_text(self):
        assert coerce_from_string("maybe", FieldType.BOOLEAN).error.code == "INVALID_BOOLEAN"


RESIDENT_MAPPINGS = (
    FieldMapping("Forename", "first_name", required=True, transform="strip"),
    FieldMapping("Surname", "last_name", required=True),
    FieldMapping("DOB", "date_of_birth", FieldType.DATE, required=True),
    FieldMapping("Fee", "weekly_fee", FieldType.DECIMAL, transform="to_decimal"),
    FieldMapping("Level", "care_level", default="residential"),
)


class TestApplyMapping:
    def test_maps_and_coerces(self):
        result = apply_mapping(
            {"Forename": " Margaret ", "Surname": "Thompson", "DOB": "14/03/1938",
             "Fee": "£1,050.00", "Level": "nursing"},
            RESIDENT_MAPPINGS,
        )
        assert result.success
        assert result.mapped_data == {
            "first_name": "Margaret",
            "last_name": "Thompson",
            "date_of_birth": date(1938, 3, 14),
            "weekly_fee": Decimal("1050.00"),
            "care_level": "nursing",
        }

    def test_optional_fields_take_defaults(self):
        result = apply_mapping(
            {"Forename": "Harold", "Surname": "Jones", "DOB": "1940-11-02", "Fee": ""},
            RESIDENT_MAPPINGS,
        )
        assert result.success
        assert "weekly_fee" not in result.mapped_data
        assert result.mapped_data["care_level"] == "residential"

    def test_collects_every_error(self):
        result = apply_mapping({"Forename": "Ada", "Surname": " ", "DOB": "last spring"}, RESIDENT_MAPPINGS)
        assert not result.success
        assert [(e.code, e.field) for e in result.errors] == [
            ("MISSING_REQUIRED_FIELD", "last_name"),
            ("INVALID_DATE_FORMAT", "date_of_birth"),
        ]
        assert result.mapped_data["first_name"] == "Ada"

    def test_mapping_from_dict(self):
        mapping = FieldMapping.from_dict({"source": "nhs_number", "required": True})
        assert mapping.target == "nhs_number"
        assert mapping.field_type is FieldType.STRING
        assert FieldMapping.from_dict({"source": "Fee", "field_type": "decimal"}).field_type is FieldType.DECIMAL
