"""Grouped conditional sums over a written table."""

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from pydantic import BaseModel

from .xlsx_common import (
    TITLE_ROW_HEIGHT,
    CellStyle,
    FieldSpec,
    UnresolvedFormulaReferenceError,
)
from .xlsx_formula import cell_range, criteria_literal

if TYPE_CHECKING:
    from .xlsx_table import Pivot, TableExtent, XLSXTableWriter

logger = logging.getLogger(__name__)


class PivotEngine:
    """Writes one row per distinct group of condition values.

    Groups keep the order in which they first appear in the records. Every
    value column gets a conditional sum over the source table, so the pivot
    stays correct when the source cells are edited later.
    """

    def __init__(self, writer: "XLSXTableWriter"):
        self.writer = writer

    @property
    def layout(self):
        return self.writer.layout

    @property
    def styles(self):
        return self.writer.styles

    def emit(
        self,
        records: Sequence[BaseModel],
        extent: "TableExtent",
        pivot: "Pivot | None",
    ) -> None:
        if pivot is None:
            return

        conditions = self._resolve(extent, pivot.condition_columns)
        values = self._resolve(extent, pivot.value_columns)
        if not conditions or not values:
            logger.debug(
                "Pivot '%s' has no resolvable condition or value column; skipped.",
                pivot.label,
            )
            return

        source_sheet = extent.sheet
        target_sheet = pivot.sheet or source_sheet
        qualifier = source_sheet if target_sheet != source_sheet else None
        if qualifier:
            self.layout.switch_sheet(target_sheet)
        try:
            self._write(records, extent, pivot, conditions, values, qualifier)
        finally:
            if qualifier:
                self.layout.switch_sheet(source_sheet)

    def _resolve(self, extent: "TableExtent", columns: list[str]) -> list[FieldSpec]:
        specs = []
        for column in columns:
            spec = self.writer.field_analyzer.resolve_export(extent.model, column)
            if spec is None:
                logger.debug("Pivot: %s", UnresolvedFormulaReferenceError(column))
                continue
            specs.append(spec)
        return specs

    def groups(self, records: Sequence[BaseModel], conditions: list[FieldSpec]):
        """Distinct tuples of serialized condition values, first seen first."""
        serialize = self.writer.serialization_engine.serialize_value
        seen: dict[tuple, None] = {}
        for record in records:
            key = tuple(
                serialize(getattr(record, spec.name, None)) for spec in conditions
            )
            seen.setdefault(key, None)
        return list(seen)

    def _write(self, records, extent, pivot, conditions, values, qualifier):
        fields = conditions + values
        start = self.layout.cursor.column_offset
        last = start + len(fields) - 1

        if pivot.label:
            row = self.layout.row_by_orientation()
            self.layout.put(row, start, pivot.label, self.styles.title_style())
            self.layout.merge(row, start, last)
            self.layout.set_row_height(row, TITLE_ROW_HEIGHT)

        row = self.layout.row_by_orientation()
        header_style = self.styles.header_style()
        for index, spec in enumerate(fields):
            self.layout.put(row, start + index, spec.label, header_style)

        condition_ranges = [
            cell_range(
                extent.column_of(spec),
                extent.first_data_row,
                extent.last_data_row,
                qualifier,
            )
            for spec in conditions
        ]

        first_row = last_row = None
        for group in self.groups(records, conditions):
            row = self.layout.row_by_orientation()
            for index, (spec, value) in enumerate(zip(conditions, group)):
                self.layout.put(
                    row, start + index, value, self.styles.style_for(spec.style, spec.color)
                )
            criteria = ",".join(
                f"{range_ref},{criteria_literal(value)}"
                for range_ref, value in zip(condition_ranges, group)
            )
            for index, spec in enumerate(values, start=len(conditions)):
                sum_range = cell_range(
                    extent.column_of(spec),
                    extent.first_data_row,
                    extent.last_data_row,
                    qualifier,
                )
                self.layout.put_formula(
                    row,
                    start + index,
                    f"{pivot.formula}({sum_range},{criteria})",
                    self.styles.formula_style_for(spec.cell_style, spec.color),
                )
            if first_row is None:
                first_row = row
            last_row = row
        logger.debug(
            "Pivot '%s' wrote rows %s-%s on sheet %s",
            pivot.label,
            first_row,
            last_row,
            self.layout.sheet_name,
        )

        if pivot.special_field is not None and first_row is not None:
            self._write_special(pivot.special_field, fields, start, first_row, last_row)

    def _write_special(self, special, fields, start, first_row, last_row):
        positions = {}
        for index, spec in enumerate(fields):
            positions.setdefault(spec.name, (start + index, spec.cell_style))
            positions.setdefault(spec.label, (start + index, spec.cell_style))

        def resolve(column: str) -> tuple[int, CellStyle]:
            if column not in positions:
                raise UnresolvedFormulaReferenceError(column)
            return positions[column]

        row = self.layout.row_by_orientation()
        self.layout.put(
            row, special.order + start, special.label, self.styles.header_style()
        )
        self.writer.special_columns.emit_formulas(
            row, special, resolve, first_row, last_row
        )
