"""
Import pipeline: reading typed records from a workbook.

Columns are configured with ImportColumn entries and matched against the
header row by title. Every data row is classified as EMPTY, VALUES or SPECIAL;
only VALUES rows become records, and a SPECIAL row ends the sheet.
"""

import logging
import zipfile
from collections.abc import Sequence
from dataclasses import dataclass, replace
from io import BytesIO
from pathlib import Path
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
from pydantic import BaseModel, ValidationError

from .xlsx_common import (
    CellCoercionError,
    ConfigurationError,
    FieldSpec,
    MissingRequiredColumnError,
    MissingRequiredValueError,
    RowStatus,
    XLSXFieldAnalyzer,
    XLSXMappingError,
    XLSXSerializationEngine,
)

logger = logging.getLogger(__name__)

DEFAULT_START_ROW = 1
DEFAULT_START_COLUMN = 1


@dataclass
class ImportColumn:
    """Configuration of one column to import.

    `title` is matched against the header text (case-insensitive, contained).
    `start_row` is the 1-based header row and `start_column` the first column
    read; the first configuration that sets them wins. `column_type`, if
    given, overrides the type the cell is coerced to. `column_order` links the
    column to validation results in the feedback pass.
    """

    target_field: str | None
    title: str
    column_type: Any = None
    required: bool = False
    column_order: int | None = None
    start_row: int | None = None
    start_column: int | None = None
    id: str | None = None


class ImportRecord(BaseModel):
    """Base class for import targets that want to know their sheet row."""

    nr_row: int | None = None


def title_matches(header: Any, title: str) -> bool:
    """True if the header text contains the configured title, ignoring case."""
    if header is None or not title:
        return False
    return title.strip().lower() in str(header).strip().lower()


def header_position(columns: Sequence[ImportColumn]) -> tuple[int, int]:
    """1-based header row and first column of a column configuration."""
    start_row = next(
        (c.start_row for c in columns if c.start_row is not None), DEFAULT_START_ROW
    )
    start_column = next(
        (c.start_column for c in columns if c.start_column is not None),
        DEFAULT_START_COLUMN,
    )
    return start_row, start_column


def match_titles(
    worksheet: Worksheet,
    header_row: int,
    start_column: int,
    columns: Sequence[ImportColumn],
) -> dict[int, ImportColumn]:
    """Map 1-based worksheet columns to configurations by header title.

    Each header cell takes the first configuration it matches and every
    configuration is matched at most once.
    """
    remaining = list(columns)
    matched: dict[int, ImportColumn] = {}
    for row in worksheet.iter_rows(
        min_row=header_row, max_row=header_row, min_col=start_column
    ):
        for cell in row:
            if cell.value is None:
                continue
            for column in remaining:
                if title_matches(cell.value, column.title):
                    matched[cell.column] = column
                    remaining.remove(column)
                    break
    return matched


def default_import_columns(
    model: type[BaseModel], analyzer: XLSXFieldAnalyzer | None = None
) -> list[ImportColumn]:
    """Column configuration that reads back what the exporter writes for `model`."""
    analyzer = analyzer or XLSXFieldAnalyzer()
    header_row = 2 if analyzer.table_name(model) else DEFAULT_START_ROW
    columns = []
    for spec in analyzer.analyze_model(model):
        if spec.special or spec.formula is not None:
            continue
        order = spec.order if spec.order is not None else spec.import_order
        columns.append(
            ImportColumn(
                target_field=spec.name,
                title=spec.aliases[0] if spec.aliases and spec.order is None else spec.label,
                required=spec.required,
                column_order=order,
            )
        )
    if columns:
        columns[0].start_row = header_row
    return columns


def open_workbook(data: bytes | str | Path, data_only: bool = True) -> Workbook:
    """Load a workbook from bytes or a file path."""
    source = BytesIO(data) if isinstance(data, bytes | bytearray) else data
    try:
        return load_workbook(source, data_only=data_only)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        msg = f"Cannot open workbook: {e}"
        raise XLSXMappingError(msg) from e


class XLSXImportReader:
    """Reads records of one model from the first sheet of a workbook."""

    def __init__(self):
        self.field_analyzer = XLSXFieldAnalyzer()
        self.serialization_engine = XLSXSerializationEngine()

    def read(
        self,
        data: bytes | str | Path,
        columns: Sequence[ImportColumn],
        model: type[BaseModel],
    ) -> list[BaseModel]:
        worksheet = open_workbook(data).worksheets[0]
        return self.read_sheet(worksheet, columns, model)

    def read_with_search_params(
        self,
        data: bytes | str | Path,
        columns: Sequence[ImportColumn],
        search_columns: Sequence[ImportColumn],
        model: type[BaseModel],
        search_model: type[BaseModel],
    ) -> tuple[list[BaseModel], BaseModel]:
        """Read the key-value block above the header row and the table below."""
        if search_model is None:
            msg = "A search model is required to read search parameters."
            raise ConfigurationError(msg)
        worksheet = open_workbook(data).worksheets[0]
        header_row, _ = header_position(columns)
        search = self.read_search_params(
            worksheet, header_row, search_columns, search_model
        )
        return self.read_sheet(worksheet, columns, model), search

    def read_sheet(
        self,
        worksheet: Worksheet,
        columns: Sequence[ImportColumn],
        model: type[BaseModel],
    ) -> list[BaseModel]:
        if not columns:
            msg = "No import columns configured."
            raise ConfigurationError(msg)
        header_row, start_column = header_position(columns)
        mapping = self._map_columns(worksheet, header_row, start_column, columns, model)

        rows: list[tuple[int, dict[str, Any]]] = []
        for row_number, values in enumerate(
            worksheet.iter_rows(
                min_row=header_row + 1, min_col=start_column, values_only=True
            ),
            start=header_row + 1,
        ):
            status, data = self._read_row(row_number, values, start_column, mapping, model)
            if status is RowStatus.SPECIAL:
                logger.debug("Row %d holds a stop marker; reading ends.", row_number)
                break
            if status is RowStatus.EMPTY:
                continue
            self._check_required(row_number, data, mapping)
            rows.append((row_number, data))

        records = self._build_records(rows, mapping, model)
        logger.debug("Read %d %s records", len(records), model.__name__)
        return records

    def read_search_params(
        self,
        worksheet: Worksheet,
        header_row: int,
        search_columns: Sequence[ImportColumn],
        search_model: type[BaseModel],
    ) -> BaseModel:
        """Read label/value pairs from the rows above the header row.

        A cell matching the title of a pending configuration selects it; the
        next non-empty cell of the same row holds its value.
        """
        pending = list(search_columns)
        data: dict[str, Any] = {}
        if header_row > 1:
            for row_number, values in enumerate(
                worksheet.iter_rows(min_row=1, max_row=header_row - 1, values_only=True),
                start=1,
            ):
                current = None
                for value in values:
                    if value is None or (isinstance(value, str) and not value.strip()):
                        continue
                    if current is not None:
                        column, spec = current
                        self._assign(data, column, spec, value, row_number)
                        current = None
                        continue
                    column = next(
                        (c for c in pending if title_matches(value, c.title)), None
                    )
                    if column is None:
                        continue
                    pending.remove(column)
                    spec = self._resolve(search_model, column)
                    if spec is not None:
                        current = (column, spec)

        for column in pending:
            if column.required:
                raise MissingRequiredColumnError(column.title)
            logger.warning("Search parameter '%s' not found.", column.title)

        try:
            return search_model.model_validate(data)
        except ValidationError as e:
            msg = f"Invalid search parameters: {e}"
            raise XLSXMappingError(msg) from e

    def _resolve(self, model: type[BaseModel], column: ImportColumn) -> FieldSpec | None:
        spec = self.field_analyzer.resolve_import(
            model, column.target_field, column.column_order
        )
        if spec is None:
            if column.required:
                msg = (
                    f"Column '{column.title}' does not map to a field of "
                    f"{model.__name__}."
                )
                raise ConfigurationError(msg)
            logger.warning(
                "Column '%s' does not map to a field of %s; ignored.",
                column.title,
                model.__name__,
            )
            return None
        if column.column_type is not None:
            spec = replace(spec, field_type=column.column_type)
        return spec

    def _map_columns(self, worksheet, header_row, start_column, columns, model):
        matched = match_titles(worksheet, header_row, start_column, columns)
        matched_columns = {id(column) for column in matched.values()}
        for column in columns:
            if id(column) in matched_columns:
                continue
            if column.required:
                raise MissingRequiredColumnError(column.title)
            logger.warning("Optional column '%s' not found in header row.", column.title)

        mapping: dict[int, tuple[ImportColumn, FieldSpec]] = {}
        for index, column in matched.items():
            spec = self._resolve(model, column)
            if spec is not None:
                mapping[index] = (column, spec)
        return mapping

    def _read_row(self, row_number, values, start_column, mapping, model):
        for value in values:
            if self.field_analyzer.resolve_special(model, value) is not None:
                return RowStatus.SPECIAL, {}

        status = RowStatus.EMPTY
        data: dict[str, Any] = {}
        for index, raw_value in enumerate(values, start=start_column):
            if index not in mapping:
                continue
            column, spec = mapping[index]
            if self._assign(data, column, spec, raw_value, row_number):
                status = RowStatus.VALUES
        return status, data

    def _assign(self, data, column, spec, raw_value, row_number) -> bool:
        try:
            value = self.serialization_engine.deserialize_value(raw_value, spec)
        except CellCoercionError as e:
            if column.required:
                raise MissingRequiredValueError(column.title, row_number) from e
            logger.warning("%s Row %d: value ignored.", e, row_number)
            return False
        if value is None:
            return False
        data[spec.name] = value
        return True

    @staticmethod
    def _check_required(row_number, data, mapping) -> None:
        for column, spec in mapping.values():
            if column.required and spec.name not in data:
                raise MissingRequiredValueError(column.title, row_number)

    def _build_records(self, rows, mapping, model) -> list[BaseModel]:
        optional = [
            spec.name
            for _, spec in mapping.values()
            if XLSXFieldAnalyzer.is_optional_type(spec.field_type)
        ]
        with_row = "nr_row" in model.model_fields
        records = []
        errors = []
        for row_number, data in rows:
            for name in optional:
                data.setdefault(name, None)
            if with_row:
                data["nr_row"] = row_number
            try:
                records.append(model.model_validate(data))
            except ValidationError as e:
                errors.append(f"Row {row_number}: {e}")
        if errors:
            msg = "Import errors found:\n" + "\n".join(errors)
            raise XLSXMappingError(msg)
        return records
