"""
Feedback pass: mark every data row of an imported workbook with the outcome
of a later validation step.
"""

import logging
from collections import defaultdict
from collections.abc import Sequence
from io import BytesIO
from pathlib import Path

from openpyxl.comments import Comment
from openpyxl.styles import PatternFill
from pydantic import BaseModel

from .xlsx_common import DEFAULT_OK_MESSAGE, ValidationStatus
from .xlsx_import import ImportColumn, header_position, match_titles, open_workbook
from .xlsx_layout import autosize_column

logger = logging.getLogger(__name__)

SUCCESS_COLOR = "CCFFCC"
WARNING_COLOR = "FFFF99"
ERROR_COLOR = "FF0000"
COMMENT_AUTHOR = "xlsxmap"

_SEVERITY = {
    ValidationStatus.OK: 0,
    ValidationStatus.WARNING: 1,
    ValidationStatus.ERROR: 2,
}
_MARKER_COLORS = {
    ValidationStatus.OK: SUCCESS_COLOR,
    ValidationStatus.WARNING: WARNING_COLOR,
    ValidationStatus.ERROR: ERROR_COLOR,
}


class ValidationResult(BaseModel):
    """Outcome of validating one row, optionally pinned to one column.

    `row_index` is the 1-based sheet row (the `nr_row` of the imported
    record); `column_index` refers to `ImportColumn.column_order`.
    """

    message: str
    row_index: int
    column_index: int | None = None
    status: ValidationStatus = ValidationStatus.ERROR
    id_row: str | int | None = None


def _fill(color: str | None) -> PatternFill:
    if color is None:
        return PatternFill(fill_type=None)
    return PatternFill(fill_type="solid", fgColor=color)


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class XLSXFeedbackAnnotator:
    """Writes status markers and comments into the first sheet of a workbook.

    The marker column is placed right after the last matched column. Prior
    comments, fills and markers of the data rows are cleared first, so a
    workbook can be annotated repeatedly.
    """

    def __init__(self, ok_message: str = DEFAULT_OK_MESSAGE):
        self.ok_message = ok_message

    def annotate(
        self,
        data: bytes | str | Path,
        columns: Sequence[ImportColumn],
        results: Sequence[ValidationResult],
    ) -> bytes:
        workbook = open_workbook(data, data_only=False)
        worksheet = workbook.worksheets[0]
        header_row, start_column = header_position(columns)
        matched = match_titles(worksheet, header_row, start_column, columns)
        for column in columns:
            if column not in matched.values():
                logger.warning("Column '%s' not found in header row.", column.title)

        last_column = max(matched) if matched else start_column - 1
        marker_column = last_column + 1
        by_order = {
            column.column_order: index
            for index, column in matched.items()
            if column.column_order is not None
        }
        by_row = defaultdict(list)
        for result in results:
            by_row[result.row_index].append(result)

        annotated = 0
        for row in range(header_row + 1, worksheet.max_row + 1):
            self._clear(worksheet, row, start_column, marker_column)
            row_results = by_row.get(row)
            if row_results:
                self._mark_results(worksheet, row, marker_column, by_order, row_results)
            elif all(
                _is_blank(worksheet.cell(row=row, column=index).value)
                for index in range(start_column, last_column + 1)
            ):
                logger.debug("Row %d is blank; annotation ends.", row)
                break
            else:
                self._mark(worksheet, row, marker_column, self.ok_message, SUCCESS_COLOR)
            annotated += 1

        autosize_column(worksheet, marker_column)
        logger.debug("Annotated %d rows of sheet %s", annotated, worksheet.title)
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    @staticmethod
    def _clear(worksheet, row: int, first_column: int, marker_column: int) -> None:
        for index in range(first_column, marker_column + 1):
            cell = worksheet.cell(row=row, column=index)
            cell.comment = None
            cell.fill = _fill(None)
        worksheet.cell(row=row, column=marker_column).value = None

    @staticmethod
    def _mark(worksheet, row: int, marker_column: int, message: str, color: str) -> None:
        cell = worksheet.cell(row=row, column=marker_column)
        cell.value = message
        cell.fill = _fill(color)

    def _mark_results(self, worksheet, row, marker_column, by_order, results) -> None:
        comments = defaultdict(list)
        for result in results:
            if result.column_index is None:
                continue
            index = by_order.get(result.column_index)
            if index is None:
                logger.warning(
                    "Row %d: no matched column with order %d for '%s'.",
                    row,
                    result.column_index,
                    result.message,
                )
                continue
            comments[index].append(result.message)

        for index, messages in comments.items():
            cell = worksheet.cell(row=row, column=index)
            cell.fill = _fill(WARNING_COLOR)
            cell.comment = Comment("\n".join(messages), COMMENT_AUTHOR)

        status = max((r.status for r in results), key=_SEVERITY.__getitem__)
        message = "; ".join(r.message for r in results if r.message)
        self._mark(
            worksheet,
            row,
            marker_column,
            message or self.ok_message,
            _MARKER_COLORS[status],
        )
