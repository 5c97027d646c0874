"""
Cursor and layout handling for XLSX export.

The layout engine owns the workbook, the current worksheet and one cursor per
worksheet. All other export components ask the engine for the row to write
to; they never track rows themselves.

Row numbers are 1-based like openpyxl rows. Column positions are 0-based
offsets: a field of order `n` in a table block starting at offset `o` is
written to worksheet column `n + o + 1`.
"""

import logging
from dataclasses import dataclass
from typing import Any

from openpyxl.cell import MergedCell
from openpyxl.utils import get_column_letter
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from .xlsx_common import ConfigurationError, Orientation

logger = logging.getLogger(__name__)

MIN_COLUMN_WIDTH = 10
MAX_COLUMN_WIDTH = 50
MAX_SHEETNAME_LENGTH = 31


@dataclass
class LayoutCursor:
    """Write position on one worksheet.

    row_pointer: next row that has never been handed out
    column_offset: first column of the current table block (horizontal only)
    table_start_row: first row of the current table (the shared band in
        horizontal orientation)
    band_row: next band row to reuse for a non-first horizontal table
    is_first_table: no table has been completed on this sheet yet
    """

    row_pointer: int = 1
    column_offset: int = 0
    table_start_row: int | None = None
    band_row: int = 1
    is_first_table: bool = True


class XLSXLayoutEngine:
    """Hands out rows on the current sheet according to the orientation."""

    def __init__(self, workbook: Workbook, orientation: Orientation = Orientation.VERTICAL):
        if not isinstance(orientation, Orientation):
            msg = f"Unknown orientation: {orientation}"
            raise ConfigurationError(msg)
        self.workbook = workbook
        self.orientation = orientation
        self._cursors: dict[str, LayoutCursor] = {}
        self.worksheet: Worksheet | None = None
        self.cursor: LayoutCursor | None = None

    @property
    def horizontal(self) -> bool:
        return self.orientation is Orientation.HORIZONTAL

    @property
    def sheet_name(self) -> str | None:
        return self.worksheet.title if self.worksheet is not None else None

    def switch_sheet(self, name: str) -> Worksheet:
        """Make `name` the current sheet, creating it on first use.

        The cursor of the sheet left behind is kept, so that coming back to
        it continues exactly where writing stopped.
        """
        if not name:
            msg = "Sheet name must not be empty."
            raise ConfigurationError(msg)
        if len(name) > MAX_SHEETNAME_LENGTH:
            msg = f"Sheet name '{name}' exceeds {MAX_SHEETNAME_LENGTH} characters."
            raise ConfigurationError(msg)
        if self.worksheet is not None and self.worksheet.title == name:
            return self.worksheet

        if name not in self._cursors:
            self._remove_default_sheet()
            self.workbook.create_sheet(title=name)
            self._cursors[name] = LayoutCursor()
            logger.debug("Created sheet %s", name)
        else:
            logger.debug("Switching back to sheet %s", name)
        self.worksheet = self.workbook[name]
        self.cursor = self._cursors[name]
        return self.worksheet

    def sheet_names(self) -> list[str]:
        return list(self._cursors)

    def _remove_default_sheet(self) -> None:
        if not self._cursors and "Sheet" in self.workbook.sheetnames:
            self.workbook.remove(self.workbook["Sheet"])

    def _require_sheet(self) -> LayoutCursor:
        if self.cursor is None:
            msg = "No sheet selected; call switch_sheet first."
            raise ConfigurationError(msg)
        return self.cursor

    # Row operations
    def next_row(self) -> int:
        """Hand out a fresh row below everything written so far."""
        cursor = self._require_sheet()
        row = cursor.row_pointer
        cursor.row_pointer += 1
        return row

    def row_by_orientation(self) -> int:
        """Row for the next line of the current table.

        Tables after the first one on a horizontal sheet write into the rows of
        the shared band instead of creating new rows.
        """
        cursor = self._require_sheet()
        if (
            self.horizontal
            and cursor.table_start_row is not None
            and not cursor.is_first_table
        ):
            row = cursor.band_row
            cursor.band_row += 1
            if row >= cursor.row_pointer:
                cursor.row_pointer = row + 1
            return row
        return self.next_row()

    def empty_rows(self, count: int) -> None:
        cursor = self._require_sheet()
        cursor.row_pointer += max(count, 0)

    def title_row(self) -> int | None:
        """Row for a table title.

        Horizontal tables after the first one put their title in the row just
        above the shared band. None if there is no such row.
        """
        cursor = self._require_sheet()
        if (
            self.horizontal
            and cursor.table_start_row is not None
            and not cursor.is_first_table
        ):
            if cursor.table_start_row <= 1:
                return None
            cursor.band_row = cursor.table_start_row - 1
        return self.row_by_orientation()

    def start_table(self) -> int:
        """Mark the start of a table body (header or first data row)."""
        cursor = self._require_sheet()
        if self.horizontal:
            if cursor.table_start_row is None:
                cursor.table_start_row = cursor.row_pointer
            cursor.band_row = cursor.table_start_row
        else:
            cursor.table_start_row = cursor.row_pointer
            cursor.band_row = cursor.table_start_row
        return cursor.table_start_row

    def finish_table(self, width: int, distance: int) -> None:
        """Close a table of `width` columns.

        Horizontal tables move the column offset `distance` columns to the
        right of the finished block.
        """
        cursor = self._require_sheet()
        if self.horizontal:
            cursor.column_offset += width + distance
        cursor.is_first_table = False

    # Cell operations
    def put(self, row: int, column: int, value: Any, style: str | None = None):
        """Write `value` to the 0-based `column` of `row` on the current sheet."""
        self._require_sheet()
        cell = self.worksheet.cell(row=row, column=column + 1)
        cell.value = value
        if isinstance(value, str) and value.startswith("="):
            # plain text that only looks like a formula
            cell.data_type = "s"
        if style is not None:
            cell.style = style
        return cell

    def put_formula(self, row: int, column: int, formula: str, style: str | None = None):
        """Write a formula (without leading '=') to the 0-based `column`."""
        self._require_sheet()
        cell = self.worksheet.cell(row=row, column=column + 1)
        cell.value = f"={formula}"
        if style is not None:
            cell.style = style
        return cell

    def merge(self, row: int, first_column: int, last_column: int) -> None:
        """Merge 0-based columns of one row if they span more than one cell."""
        self._require_sheet()
        if last_column > first_column:
            self.worksheet.merge_cells(
                start_row=row,
                start_column=first_column + 1,
                end_row=row,
                end_column=last_column + 1,
            )

    def set_row_height(self, row: int, height: float) -> None:
        self._require_sheet()
        self.worksheet.row_dimensions[row].height = height

    # Sheet finishing
    def freeze_panes(self, col: int, row: int, sheet_name: str | None = None) -> None:
        """Freeze `col` columns and `row` rows; (0, 0) leaves the sheet unfrozen."""
        worksheet = self.workbook[sheet_name] if sheet_name else self.worksheet
        if col <= 0 and row <= 0:
            return
        worksheet.freeze_panes = worksheet.cell(row=row + 1, column=col + 1)

    def autosize(self, up_to_column: int | None = None, sheet_name: str | None = None):
        """Auto-adjust widths of columns 1..`up_to_column` based on content."""
        worksheet = self.workbook[sheet_name] if sheet_name else self.worksheet
        if up_to_column is None:
            up_to_column = worksheet.max_column
        for col_idx in range(1, up_to_column + 1):
            autosize_column(worksheet, col_idx)


def autosize_column(worksheet: Worksheet, col_idx: int) -> None:
    """Fit the width of one 1-based column to its longest plain value."""
    max_length = 0
    for row in worksheet.iter_rows(min_col=col_idx, max_col=col_idx):
        for cell in row:
            if isinstance(cell, MergedCell) or cell.value is None:
                continue
            if cell.data_type == "f":
                continue
            max_length = max(max_length, len(str(cell.value)))

    adjusted_width = min(max(max_length + 2, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH)
    worksheet.column_dimensions[get_column_letter(col_idx)].width = adjusted_width
