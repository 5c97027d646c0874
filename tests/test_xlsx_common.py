"""
Tests for the xlsx_common module.

Covers field analysis, converters, the serialization engine, the exception
hierarchy and the builder configuration.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

import pytest
from pydantic import BaseModel

from xlsxmap.xlsx_common import (
    CellCoercionError,
    CellStyle,
    ConfigurationError,
    ExportConfig,
    MissingRequiredColumnError,
    MissingRequiredValueError,
    Orientation,
    UnresolvedFormulaReferenceError,
    XLSXConverters,
    XLSXFieldAnalyzer,
    XLSXImport,
    XLSXMappingError,
    XLSXMetadata,
    XLSXSerializationEngine,
    unwrap_optional,
)

from .conftest import Line, Person, Region, Sale


class TestFieldAnalyzer:
    """Tests for the field metadata registry."""

    def test_fields_sorted_by_order(self):
        class Shuffled(BaseModel):
            c: Annotated[str, XLSXMetadata(order=2)]
            a: Annotated[str, XLSXMetadata(order=0)]
            b: Annotated[str, XLSXMetadata(order=1)]

        specs = XLSXFieldAnalyzer().analyze_model(Shuffled)
        assert [s.name for s in specs] == ["a", "b", "c"]

    def test_fields_without_metadata_are_skipped(self):
        class Partial(BaseModel):
            shown: Annotated[str, XLSXMetadata(order=0)]
            hidden: str = "x"

        specs = XLSXFieldAnalyzer().analyze_model(Partial)
        assert [s.name for s in specs] == ["shown"]

    def test_default_label_from_field_name(self):
        class Unlabeled(BaseModel):
            sold_on: Annotated[date, XLSXMetadata(order=0)]

        spec = XLSXFieldAnalyzer().analyze_model(Unlabeled)[0]
        assert spec.label == "Sold On"

    def test_result_is_cached(self):
        analyzer = XLSXFieldAnalyzer()
        assert analyzer.analyze_model(Sale) is analyzer.analyze_model(Sale)

    def test_duplicate_order_rejected(self):
        class Clash(BaseModel):
            a: Annotated[str, XLSXMetadata(order=0)]
            b: Annotated[str, XLSXMetadata(order=0)]

        with pytest.raises(ConfigurationError, match="share the order 0"):
            XLSXFieldAnalyzer().analyze_model(Clash)

    def test_formula_style_without_formula_rejected(self):
        class Broken(BaseModel):
            total: Annotated[int, XLSXMetadata(order=0, style=CellStyle.FORMULA)]

        with pytest.raises(ConfigurationError, match="no formula"):
            XLSXFieldAnalyzer().analyze_model(Broken)

    def test_non_model_rejected(self):
        with pytest.raises(TypeError):
            XLSXFieldAnalyzer().analyze_model(dict)

    def test_required_flag(self):
        specs = {s.name: s for s in XLSXFieldAnalyzer().analyze_model(Sale)}
        assert specs["region"].required is True
        assert specs["paid"].required is False
        assert specs["note"].required is False

    def test_formula_cell_style(self):
        spec = XLSXFieldAnalyzer().analyze_model(Line)[2]
        assert spec.style is CellStyle.FORMULA
        assert spec.cell_style is CellStyle.NUMBER

    def test_resolve_export_by_label_and_name(self):
        analyzer = XLSXFieldAnalyzer()
        assert analyzer.resolve_export(Sale, "Sold on").name == "sold_on"
        assert analyzer.resolve_export(Sale, "sold_on").name == "sold_on"
        assert analyzer.resolve_export(Sale, "unknown") is None

    def test_resolve_import(self):
        analyzer = XLSXFieldAnalyzer()
        assert analyzer.resolve_import(Person, "Full name").name == "name"
        assert analyzer.resolve_import(Person, "age").name == "age"
        assert analyzer.resolve_import(Sale, None, 3).name == "sold_on"
        assert analyzer.resolve_import(Sale, "Price").name == "price"

    def test_special_fields_excluded_from_import(self):
        analyzer = XLSXFieldAnalyzer()
        assert analyzer.resolve_import(Person, "end_marker") is None
        assert analyzer.resolve_special(Person, " END OF LIST ").name == "end_marker"
        assert analyzer.resolve_special(Person, "Anna") is None
        assert analyzer.resolve_special(Person, None) is None

    def test_order_bounds_and_table_name(self):
        analyzer = XLSXFieldAnalyzer()
        assert analyzer.min_order(Sale) == 0
        assert analyzer.max_order(Sale) == 5
        assert analyzer.table_name(Sale) == "Sales"
        assert analyzer.table_name(Line) is None

    def test_import_only_fields_are_not_exported(self):
        analyzer = XLSXFieldAnalyzer()
        assert analyzer.export_fields(Person) == []

    def test_unwrap_optional(self):
        assert unwrap_optional(int | None) is int
        assert unwrap_optional(str) is str


class TestConverters:
    """Tests for text converters used on import."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("1234.5", Decimal("1234.5")),
            ("1.234,5", Decimal("1234.5")),
            ("1,234.5", Decimal("1234.5")),
            ("1,5", Decimal("1.5")),
            ("1,234,567", Decimal("1234567")),
            ("1.234.567", Decimal("1234567")),
            (" -12 ", Decimal("-12")),
            ("1 234,50", Decimal("1234.50")),
        ],
    )
    def test_text_to_decimal(self, text, expected):
        assert XLSXConverters.text_to_decimal(text) == expected

    @pytest.mark.parametrize("text", ["abc", "1,2.3.4x", ""])
    def test_text_to_decimal_invalid(self, text):
        with pytest.raises(ValueError, match="Cannot parse"):
            XLSXConverters.text_to_decimal(text)

    def test_yes_no(self):
        assert XLSXConverters.yes_no_to_bool("Yes") is True
        assert XLSXConverters.yes_no_to_bool("si") is True
        assert XLSXConverters.yes_no_to_bool("0") is False
        assert XLSXConverters.bool_to_yes_no(False) == "No"
        with pytest.raises(ValueError, match="Cannot convert"):
            XLSXConverters.yes_no_to_bool("maybe")

    def test_text_to_date(self):
        assert XLSXConverters.text_to_date("01/03/2024") == date(2024, 3, 1)
        assert XLSXConverters.text_to_date("2024-03-01") == date(2024, 3, 1)
        with pytest.raises(ValueError, match="DD/MM/YYYY"):
            XLSXConverters.text_to_date("March 1st")


class TestSerializationEngine:
    """Tests for converting values to and from cells."""

    def setup_method(self):
        self.engine = XLSXSerializationEngine()
        self.specs = {
            s.name: s for s in XLSXFieldAnalyzer().analyze_model(Sale)
        }

    def test_serialize(self):
        assert self.engine.serialize_value(None) is None
        assert self.engine.serialize_value(Region.EAST) == "east"
        assert self.engine.serialize_value(True) == "Yes"
        assert self.engine.serialize_value(Decimal("1.5")) == Decimal("1.5")
        assert self.engine.serialize_value(["a", 1]) == '["a", 1]'

    def test_deserialize_blank_is_none(self):
        assert self.engine.deserialize_value(None, self.specs["note"]) is None
        assert self.engine.deserialize_value("   ", self.specs["note"]) is None

    def test_deserialize_int_rounds_half_up(self):
        assert self.engine.deserialize_value(2.5, self.specs["amount"]) == 3
        assert self.engine.deserialize_value("4", self.specs["amount"]) == 4

    def test_deserialize_str_from_number(self):
        assert self.engine.deserialize_value(12.0, self.specs["note"]) == "12"
        assert self.engine.deserialize_value(12.5, self.specs["note"]) == "12.5"

    def test_deserialize_date(self):
        spec = self.specs["sold_on"]
        assert self.engine.deserialize_value(datetime(2024, 3, 1), spec) == date(
            2024, 3, 1
        )
        assert self.engine.deserialize_value("15/03/2024", spec) == date(2024, 3, 15)

    def test_deserialize_enum_and_bool(self):
        assert self.engine.deserialize_value("west", self.specs["region"]) is Region.WEST
        assert self.engine.deserialize_value("No", self.specs["paid"]) is False
        assert self.engine.deserialize_value(True, self.specs["paid"]) is True

    def test_deserialize_error(self):
        with pytest.raises(CellCoercionError, match="amount") as exc_info:
            self.engine.deserialize_value("many", self.specs["amount"])
        assert exc_info.value.value == "many"
        assert isinstance(exc_info.value.original_error, ValueError)

    def test_import_metadata_only_field(self):
        class Imported(BaseModel):
            code: Annotated[str, XLSXImport(alias=("Code",))]

        spec = XLSXFieldAnalyzer().analyze_model(Imported)[0]
        assert self.engine.deserialize_value(7.0, spec) == "7"


class TestErrors:
    def test_hierarchy(self):
        for error in (
            ConfigurationError("x"),
            MissingRequiredColumnError("Name"),
            MissingRequiredValueError("Name", 4),
            UnresolvedFormulaReferenceError("amount"),
        ):
            assert isinstance(error, XLSXMappingError)
            assert isinstance(error, ValueError)

    def test_messages_name_column_and_row(self):
        assert "'Name'" in str(MissingRequiredColumnError("Name"))
        error = MissingRequiredValueError("Name", 4)
        assert "'Name'" in str(error)
        assert "row: 4" in str(error)


class TestExportConfig:
    def test_defaults(self):
        config = ExportConfig()
        assert config.font_name == "Arial"
        assert config.orientation is Orientation.VERTICAL
        assert config.distance_table == 1

    def test_orientation_from_string(self):
        assert ExportConfig(orientation="HORIZONTAL").orientation is Orientation.HORIZONTAL

    def test_unknown_orientation(self):
        with pytest.raises(ConfigurationError, match="Unknown orientation"):
            ExportConfig(orientation="diagonal")

    def test_negative_values(self):
        with pytest.raises(ConfigurationError):
            ExportConfig(distance_table=-1)
        with pytest.raises(ConfigurationError):
            ExportConfig(row_freeze_pane=-2)
