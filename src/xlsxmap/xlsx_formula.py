"""
Formula text builders and the special column generator.

Formulas are produced as plain text (without the leading '=') referencing the
ranges written by the table writer; they are never evaluated here.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from openpyxl.utils import get_column_letter, quote_sheetname

from .xlsx_common import (
    PLACEHOLDER,
    CellStyle,
    ConfigurationError,
    FieldSpec,
    Operation,
    UnresolvedFormulaReferenceError,
)

if TYPE_CHECKING:
    from .xlsx_layout import XLSXLayoutEngine
    from .xlsx_styles import XLSXStyleCache
    from .xlsx_table import SpecialField, TableExtent

logger = logging.getLogger(__name__)

# Resolves a column name to its 0-based worksheet column and cell category
ColumnResolver = Callable[[str], tuple[int, CellStyle]]


def cell_ref(column: int, row: int) -> str:
    """A1 reference of a 0-based column and 1-based row."""
    return f"{get_column_letter(column + 1)}{row}"


def cell_range(
    column: int, first_row: int, last_row: int, sheet: str | None = None
) -> str:
    """Single-column range, qualified with the sheet name if given."""
    ref = f"{cell_ref(column, first_row)}:{cell_ref(column, last_row)}"
    if sheet:
        return f"{quote_sheetname(sheet)}!{ref}"
    return ref


def operation_formula(operation: Operation, range_ref: str) -> str:
    """Aggregate over one column range. Only SUM is supported."""
    if operation is Operation.SUM:
        return f"SUM({range_ref})"
    msg = f"Operation {operation.name} cannot aggregate a column range."
    raise ConfigurationError(msg)


def operation_formula_row(operation: Operation, columns: Iterable[int], row: int) -> str:
    """Combine cells of the same row: SUM(B2,C2), B2-C2 or B2/C2."""
    refs = [cell_ref(column, row) for column in columns]
    if not refs:
        msg = "A row formula needs at least one column."
        raise ConfigurationError(msg)
    if operation is Operation.SUM:
        return f"SUM({','.join(refs)})"
    if operation is Operation.SUBTRACTION:
        return "-".join(refs)
    if operation is Operation.DIVISION:
        return "/".join(refs)
    msg = f"Operation {operation.name} is not available for row formulas."
    raise ConfigurationError(msg)


def fill_template(template: str, ranges: Iterable[str]) -> str:
    """Replace the placeholders of a custom template from left to right."""
    result = template
    for range_ref in ranges:
        result = result.replace(PLACEHOLDER, range_ref, 1)
    return result


def criteria_literal(value: Any) -> str:
    """Render a group value as a criteria argument of a conditional sum."""
    if value is None:
        return '""'
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int | float | Decimal):
        return str(value)
    if isinstance(value, datetime | date):
        return f"DATE({value.year},{value.month},{value.day})"
    text = str(value).replace('"', '""')
    return f'"{text}"'


def extent_resolver(extent: "TableExtent", analyzer) -> ColumnResolver:
    """Resolver for columns of a written table, by field name or label."""

    def resolve(column: str) -> tuple[int, CellStyle]:
        spec: FieldSpec | None = analyzer.resolve_export(extent.model, column)
        if spec is None:
            raise UnresolvedFormulaReferenceError(column)
        return extent.column_of(spec), spec.cell_style

    return resolve


class SpecialColumnGenerator:
    """Writes computed rows (totals and custom formulas) below a table."""

    def __init__(self, layout: "XLSXLayoutEngine", styles: "XLSXStyleCache"):
        self.layout = layout
        self.styles = styles

    def emit(
        self,
        extent: "TableExtent",
        special_fields: Iterable["SpecialField"],
        resolver: ColumnResolver,
    ) -> None:
        """One row per special field below the table described by `extent`."""
        for special in special_fields:
            row = self.layout.row_by_orientation()
            self.layout.put(
                row,
                special.order + extent.column_offset,
                special.label,
                self.styles.header_style(),
            )
            self.emit_formulas(
                row, special, resolver, extent.first_data_row, extent.last_data_row
            )

    def emit_formulas(
        self,
        row: int,
        special: "SpecialField",
        resolver: ColumnResolver,
        first_row: int,
        last_row: int,
        sheet: str | None = None,
        target_columns: Iterable[int] | None = None,
    ) -> None:
        """Write the formulas of one special field into `row`.

        Standard operations put one aggregate under each referenced column.
        Custom templates are written once, under the first referenced column.
        `target_columns` overrides where the formulas go (key-value blocks);
        `sheet` qualifies the ranges when they live on another sheet.
        """
        targets = iter(target_columns) if target_columns is not None else None
        if special.operation is Operation.CUSTOM:
            self._emit_custom(row, special, resolver, first_row, last_row, sheet, targets)
            return

        for column in special.columns:
            try:
                position, category = resolver(column)
            except UnresolvedFormulaReferenceError as e:
                logger.debug("Special field '%s': %s Skipped.", special.label, e)
                continue
            formula = operation_formula(
                special.operation, cell_range(position, first_row, last_row, sheet)
            )
            target = next(targets) if targets is not None else position
            style = self.styles.formula_style_for(special.style or category)
            self.layout.put_formula(row, target, formula, style)

    def _emit_custom(self, row, special, resolver, first_row, last_row, sheet, targets):
        if not special.formula:
            msg = f"Special field '{special.label}' uses CUSTOM without a formula."
            raise ConfigurationError(msg)
        ranges = []
        first_position = None
        category = special.style
        for column in special.columns:
            try:
                position, column_category = resolver(column)
            except UnresolvedFormulaReferenceError as e:
                logger.debug(
                    "Special field '%s': %s No formula written.", special.label, e
                )
                return
            if first_position is None:
                first_position = position
            if category is None:
                category = column_category
            ranges.append(cell_range(position, first_row, last_row, sheet))

        if first_position is None:
            logger.debug("Special field '%s' references no column.", special.label)
            return
        target = next(targets) if targets is not None else first_position
        self.layout.put_formula(
            row,
            target,
            fill_template(special.formula, ranges),
            self.styles.formula_style_for(category),
        )
