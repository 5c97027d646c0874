"""
Table writer for XLSX export.

This module provides:
- Data holders describing a configured table (special fields, reference
  labels, pivots, complete table and report configurations)
- TableExtent, the geometry of a written table used by formula generation
- XLSXTableWriter writing tables to a workbook under vertical or horizontal
  orientation and serializing the result
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from io import BytesIO

from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.workbook import Workbook
from pydantic import BaseModel

from .xlsx_common import (
    HEADER_ROW_HEIGHT,
    TITLE_ROW_HEIGHT,
    CellStyle,
    ConfigurationError,
    ExportConfig,
    FieldSpec,
    Operation,
    Orientation,
    XLSXFieldAnalyzer,
    XLSXSerializationEngine,
    XLSXSerializationError,
)
from .xlsx_formula import SpecialColumnGenerator, extent_resolver, operation_formula_row
from .xlsx_layout import XLSXLayoutEngine
from .xlsx_pivot import PivotEngine
from .xlsx_styles import XLSXStyleCache

logger = logging.getLogger(__name__)

DEFAULT_SHEET = "export"


@dataclass
class SpecialField:
    """Computed row written below a table.

    `columns` name the referenced fields by field name or label. CUSTOM
    operations use `formula` as template in which every "?" is replaced by the
    range of the next referenced column.
    """

    label: str
    order: int = 0
    columns: list[str] = field(default_factory=list)
    operation: Operation = Operation.SUM
    formula: str | None = None
    style: CellStyle | None = None


@dataclass
class ReferenceLabel:
    """Free text line merged across the column span of a table."""

    text: str
    bold: bool = False


@dataclass
class Pivot:
    """Grouped conditional sums over the records of a table."""

    condition_columns: list[str]
    value_columns: list[str]
    label: str | None = None
    sheet: str | None = None
    formula: str = "SUMIFS"
    special_field: SpecialField | None = None


@dataclass
class ComplexExport:
    """One fully configured table."""

    records: Sequence[BaseModel]
    sheet: str = DEFAULT_SHEET
    special_fields: list[SpecialField] = field(default_factory=list)
    reference_labels: list[ReferenceLabel] = field(default_factory=list)
    pivot: Pivot | None = None
    header: bool = True


@dataclass
class ReportExport:
    """A key-value block of generalities followed by configured tables.

    Special fields of the generalities are written into rows reserved below
    the key-value block and reference the data table written after them.
    """

    data: list[ComplexExport] = field(default_factory=list)
    generalities: BaseModel | None = None
    generalities_sheet: str = DEFAULT_SHEET
    generalities_special_fields: list[SpecialField] = field(default_factory=list)


@dataclass
class TableExtent:
    """Where a table was written."""

    sheet: str
    model: type[BaseModel]
    fields: list[FieldSpec]
    column_offset: int
    header: bool
    first_data_row: int
    last_data_row: int

    @property
    def size(self) -> int:
        return self.last_data_row - self.first_data_row + 1

    def column_of(self, spec: FieldSpec) -> int:
        """0-based worksheet column of an exported field."""
        return spec.order + self.column_offset


class XLSXTableWriter:
    """Writes tables of records into one workbook.

    A writer holds the state of one document (workbook, styles, cursors) and
    must not be shared between concurrent export calls.
    """

    def __init__(self, config: ExportConfig | None = None):
        self.config = config or ExportConfig()
        self.workbook = Workbook()
        self.field_analyzer = XLSXFieldAnalyzer()
        self.serialization_engine = XLSXSerializationEngine()
        self.styles = XLSXStyleCache(
            self.workbook, self.config.font_name, self.config.header_color
        )
        self.layout = XLSXLayoutEngine(self.workbook, self.config.orientation)
        self.special_columns = SpecialColumnGenerator(self.layout, self.styles)
        self.pivots = PivotEngine(self)

    @property
    def distance(self) -> int:
        return self.config.distance_table

    def write_complex(self, table: ComplexExport) -> TableExtent:
        """Write a configured table on its sheet."""
        self.layout.switch_sheet(table.sheet)
        return self.write_table(
            table.records,
            special_fields=table.special_fields,
            reference_labels=table.reference_labels,
            pivot=table.pivot,
            header=table.header,
        )

    def write_table(
        self,
        records: Sequence[BaseModel],
        special_fields: Sequence[SpecialField] | None = None,
        reference_labels: Sequence[ReferenceLabel] | None = None,
        pivot: Pivot | None = None,
        header: bool = True,
    ) -> TableExtent:
        """Write a homogeneous list of records to the current sheet."""
        if not records:
            msg = "No records provided for table export."
            raise ConfigurationError(msg)
        if self.layout.sheet_name is None:
            self.layout.switch_sheet(DEFAULT_SHEET)

        model = type(records[0])
        mixed = {type(r).__name__ for r in records if type(r) is not model}
        if mixed:
            msg = f"Records of one table must share a type; got {model.__name__} and {', '.join(sorted(mixed))}."
            raise ConfigurationError(msg)

        specs = self.field_analyzer.export_fields(model)
        if not specs:
            msg = f"{model.__name__} declares no exported fields."
            raise ConfigurationError(msg)

        special_fields = list(special_fields or [])
        reference_labels = list(reference_labels or [])
        logger.debug(
            "Writing %d %s records to sheet %s (%s)",
            len(records),
            model.__name__,
            self.layout.sheet_name,
            self.config.orientation.value,
        )

        if self.config.orientation is Orientation.VERTICAL:
            self._write_reference_labels(model, reference_labels)
            self._write_title(model)
            extent = self._write_body(model, specs, records, header)
            self._write_special_columns(extent, special_fields)
            self.layout.empty_rows(self.distance)
            self.pivots.emit(records, extent, pivot)
            self.layout.empty_rows(self.distance)
            self.layout.finish_table(self._width(model), self.distance)
        else:
            self._write_title(model)
            extent = self._write_body(model, specs, records, header)
            self._write_special_columns(extent, special_fields)
            self._write_reference_labels(model, reference_labels)
            self.pivots.emit(records, extent, pivot)
            self.layout.finish_table(self._width(model), self.distance)
        return extent

    def _width(self, model: type[BaseModel]) -> int:
        return self.field_analyzer.max_order(model) + 1

    def _span(self, model: type[BaseModel]) -> tuple[int, int]:
        offset = self.layout.cursor.column_offset
        return (
            self.field_analyzer.min_order(model) + offset,
            self.field_analyzer.max_order(model) + offset,
        )

    def _write_reference_labels(self, model, labels: list[ReferenceLabel]) -> None:
        first, last = self._span(model)
        for label in labels:
            row = self.layout.row_by_orientation()
            self.layout.put(row, first, label.text, self.styles.label_style(label.bold))
            self.layout.merge(row, first, last)

    def _write_title(self, model: type[BaseModel]) -> None:
        title = self.field_analyzer.table_name(model)
        if not title:
            return
        row = self.layout.title_row()
        if row is None:
            logger.warning(
                "No row left above the table band for title '%s'; title skipped.",
                title,
            )
            return
        first, last = self._span(model)
        self.layout.put(row, first, title, self.styles.title_style())
        self.layout.merge(row, first, last)
        self.layout.set_row_height(row, TITLE_ROW_HEIGHT)

    def _write_body(self, model, specs, records, header: bool) -> TableExtent:
        self.layout.start_table()
        offset = self.layout.cursor.column_offset

        if header:
            row = self.layout.row_by_orientation()
            header_style = self.styles.header_style()
            for spec in specs:
                self.layout.put(row, spec.order + offset, spec.label, header_style)
            self.layout.set_row_height(row, HEADER_ROW_HEIGHT)

        first_data_row = None
        last_data_row = None
        for record in records:
            row = self.layout.row_by_orientation()
            self._write_record(row, record, specs, offset)
            if first_data_row is None:
                first_data_row = row
            last_data_row = row

        return TableExtent(
            sheet=self.layout.sheet_name,
            model=model,
            fields=specs,
            column_offset=offset,
            header=header,
            first_data_row=first_data_row,
            last_data_row=last_data_row,
        )

    def _write_record(self, row: int, record: BaseModel, specs, offset: int) -> None:
        for spec in specs:
            column = spec.order + offset
            if spec.formula is not None:
                formula = operation_formula_row(
                    spec.formula.operation,
                    [order + offset for order in spec.formula.fields],
                    row,
                )
                style = self.styles.formula_style_for(spec.cell_style, spec.color)
                self.layout.put_formula(row, column, formula, style)
                continue

            value = getattr(record, spec.name, None)
            try:
                cell_value = self.serialization_engine.serialize_value(value)
                self.layout.put(
                    row, column, cell_value, self.styles.style_for(spec.style, spec.color)
                )
            except (ValueError, TypeError, IllegalCharacterError) as e:
                raise XLSXSerializationError(spec.name, value, e) from e

    def _write_special_columns(
        self, extent: TableExtent, special_fields: list[SpecialField]
    ) -> None:
        if not special_fields:
            return
        self.special_columns.emit(
            extent, special_fields, extent_resolver(extent, self.field_analyzer)
        )

    def to_bytes(self) -> bytes:
        """Auto-size columns, freeze panes and serialize the workbook."""
        for sheet_name in self.layout.sheet_names():
            self.layout.autosize(sheet_name=sheet_name)
            if self.config.orientation is Orientation.VERTICAL:
                self.layout.freeze_panes(
                    self.config.col_freeze_pane,
                    self.config.row_freeze_pane,
                    sheet_name=sheet_name,
                )
        buffer = BytesIO()
        self.workbook.save(buffer)
        return buffer.getvalue()
