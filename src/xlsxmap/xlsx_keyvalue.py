"""
Key-value blocks for report export.

A key-value block lists the exported fields of a single record as label/value
pairs (label in the first column, value in the second). Special fields of the
block are written into rows reserved below the pairs once the data table they
summarize has been written.
"""

import itertools
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pydantic import BaseModel

from .xlsx_common import TITLE_ROW_HEIGHT, ConfigurationError
from .xlsx_formula import extent_resolver

if TYPE_CHECKING:
    from .xlsx_table import SpecialField, TableExtent, XLSXTableWriter

logger = logging.getLogger(__name__)

LABEL_COLUMN = 0
VALUE_COLUMN = 1


@dataclass
class KeyValueBlock:
    """Position of a written key-value block."""

    sheet: str
    first_row: int
    last_row: int
    special_rows: list[int] = field(default_factory=list)


class XLSXKeyValueWriter:
    """Writes the generalities of a report."""

    def __init__(self, writer: "XLSXTableWriter"):
        self.writer = writer

    def write(
        self,
        record: BaseModel,
        sheet: str,
        special_fields: Sequence["SpecialField"] = (),
    ) -> KeyValueBlock:
        """Write `record` as label/value rows and reserve rows for specials."""
        if record is None:
            msg = "No record provided for the key-value block."
            raise ConfigurationError(msg)
        layout = self.writer.layout
        styles = self.writer.styles
        analyzer = self.writer.field_analyzer
        layout.switch_sheet(sheet)

        model = type(record)
        first_row = layout.cursor.row_pointer
        title = analyzer.table_name(model)
        if title:
            row = layout.next_row()
            layout.put(row, LABEL_COLUMN, title, styles.title_style())
            layout.merge(row, LABEL_COLUMN, VALUE_COLUMN)
            layout.set_row_height(row, TITLE_ROW_HEIGHT)

        for spec in analyzer.export_fields(model):
            row = layout.next_row()
            layout.put(row, LABEL_COLUMN, spec.label, styles.header_style())
            value = self.writer.serialization_engine.serialize_value(
                getattr(record, spec.name, None)
            )
            layout.put(
                row, VALUE_COLUMN, value, styles.style_for(spec.cell_style, spec.color)
            )

        special_rows = [layout.next_row() for _ in special_fields]
        last_row = layout.cursor.row_pointer - 1
        layout.empty_rows(self.writer.distance)
        logger.debug(
            "Key-value block %s on sheet %s: rows %d-%d, %d reserved",
            model.__name__,
            sheet,
            first_row,
            last_row,
            len(special_rows),
        )
        return KeyValueBlock(sheet, first_row, last_row, special_rows)

    def fill_specials(
        self,
        block: KeyValueBlock,
        special_fields: Sequence["SpecialField"],
        extent: "TableExtent",
    ) -> None:
        """Write the special fields of `block` as formulas over `extent`.

        Rows are rewritten on every call, so the last table wins.
        """
        if not block.special_rows:
            return
        layout = self.writer.layout
        styles = self.writer.styles
        resolver = extent_resolver(extent, self.writer.field_analyzer)
        qualifier = extent.sheet if extent.sheet != block.sheet else None

        layout.switch_sheet(block.sheet)
        try:
            for row, special in zip(block.special_rows, special_fields):
                layout.put(row, special.order, special.label, styles.header_style())
                self.writer.special_columns.emit_formulas(
                    row,
                    special,
                    resolver,
                    extent.first_data_row,
                    extent.last_data_row,
                    sheet=qualifier,
                    target_columns=itertools.count(special.order + 1),
                )
        finally:
            layout.switch_sheet(extent.sheet)
