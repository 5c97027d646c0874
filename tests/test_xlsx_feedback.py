"""Tests for the feedback annotator."""

import logging

import pytest

from xlsxmap.xlsx_api import annotate_xlsx
from xlsxmap.xlsx_common import ValidationStatus
from xlsxmap.xlsx_feedback import (
    COMMENT_AUTHOR,
    ValidationResult,
    XLSXFeedbackAnnotator,
)
from xlsxmap.xlsx_import import ImportColumn

from .conftest import open_sheet


@pytest.fixture
def columns():
    return [
        ImportColumn("name", "Full name", required=True, column_order=0),
        ImportColumn("age", "Age", column_order=1),
    ]


@pytest.fixture
def workbook(make_workbook):
    return make_workbook(
        [
            ["Full name", "Age"],
            ["Ada", 36],
            ["Bob", -1],
            ["Cy", "=B2+1"],
            [None, None],
            ["Zed", 1],
        ]
    )


def rgb(cell):
    return cell.fill.fgColor.rgb[-6:]


class TestAnnotate:
    def test_ok_rows(self, workbook, columns):
        ws = open_sheet(XLSXFeedbackAnnotator().annotate(workbook, columns, []))
        assert ws["C2"].value == "IMPORT OK"
        assert rgb(ws["C2"]) == "CCFFCC"
        assert ws["C4"].value == "IMPORT OK"

    def test_blank_row_ends_annotation(self, workbook, columns):
        ws = open_sheet(XLSXFeedbackAnnotator().annotate(workbook, columns, []))
        assert ws["C5"].value is None
        assert ws["C6"].value is None

    def test_formulas_survive(self, workbook, columns):
        ws = open_sheet(XLSXFeedbackAnnotator().annotate(workbook, columns, []))
        assert ws["B4"].value == "=B2+1"

    def test_error_with_cell_comment(self, workbook, columns):
        results = [
            ValidationResult(message="Age must be positive", row_index=3, column_index=1)
        ]
        ws = open_sheet(annotate_xlsx(workbook, columns, results))
        assert ws["C3"].value == "Age must be positive"
        assert rgb(ws["C3"]) == "FF0000"
        assert ws["B3"].comment.text == "Age must be positive"
        assert ws["B3"].comment.author == COMMENT_AUTHOR
        assert rgb(ws["B3"]) == "FFFF99"
        assert ws["A3"].comment is None

    def test_worst_status_wins(self, workbook, columns):
        results = [
            ValidationResult(
                message="check name",
                row_index=2,
                column_index=0,
                status=ValidationStatus.WARNING,
            ),
            ValidationResult(
                message="check age",
                row_index=2,
                column_index=1,
                status=ValidationStatus.WARNING,
            ),
            ValidationResult(message="duplicate", row_index=3),
            ValidationResult(
                message="odd", row_index=3, status=ValidationStatus.WARNING
            ),
        ]
        ws = open_sheet(annotate_xlsx(workbook, columns, results))
        assert ws["C2"].value == "check name; check age"
        assert rgb(ws["C2"]) == "FFFF99"
        assert ws["C3"].value == "duplicate; odd"
        assert rgb(ws["C3"]) == "FF0000"

    def test_unknown_column_order_warns(self, workbook, columns, caplog):
        results = [ValidationResult(message="??", row_index=2, column_index=9)]
        with caplog.at_level(logging.WARNING):
            ws = open_sheet(annotate_xlsx(workbook, columns, results))
        assert ws["C2"].value == "??"
        assert "no matched column with order 9" in caplog.text

    def test_unmatched_configured_column_warns(self, workbook, columns, caplog):
        columns.append(ImportColumn("city", "City", column_order=2))
        with caplog.at_level(logging.WARNING):
            annotate_xlsx(workbook, columns, [])
        assert "Column 'City' not found" in caplog.text

    def test_custom_ok_message(self, workbook, columns):
        ws = open_sheet(annotate_xlsx(workbook, columns, [], ok_message="fine"))
        assert ws["C2"].value == "fine"


class TestReannotate:
    def test_previous_feedback_is_cleared(self, workbook, columns):
        results = [ValidationResult(message="bad", row_index=3, column_index=1)]
        first = annotate_xlsx(workbook, columns, results)
        ws = open_sheet(annotate_xlsx(first, columns, []))
        assert ws["C3"].value == "IMPORT OK"
        assert ws["B3"].comment is None
        assert ws["B3"].fill.fill_type is None
