"""
Public API for XLSX export, import and feedback.

This module provides the main entry points:
- XLSXExportBuilder generating simple, configured and report workbooks
- Import functions returning typed records
- The feedback pass annotating a previously imported workbook
- CSV export and a helper adding metadata to existing models
"""

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel

from .xlsx_common import ConfigurationError, ExportConfig, XLSXImport, XLSXMetadata
from .xlsx_csv import export_csv
from .xlsx_feedback import ValidationResult, XLSXFeedbackAnnotator
from .xlsx_import import ImportColumn, XLSXImportReader, default_import_columns
from .xlsx_keyvalue import XLSXKeyValueWriter
from .xlsx_table import ComplexExport, ReportExport, XLSXTableWriter

logger = logging.getLogger(__name__)


class XLSXExportBuilder:
    """Generates workbooks from lists of records.

    Every `generate_*` call works on a fresh workbook with its own style cache
    and cursors. The builder itself only holds the configuration, but it is
    not meant to be shared between threads that generate concurrently.
    """

    def __init__(self, config: ExportConfig | None = None):
        self.config = config or ExportConfig()

    def _writer(self) -> XLSXTableWriter:
        return XLSXTableWriter(self.config)

    def generate_excel(self, *record_lists: Sequence[BaseModel]) -> bytes:
        """One table per record list, all on the default sheet."""
        if not record_lists:
            msg = "No record lists provided."
            raise ConfigurationError(msg)
        writer = self._writer()
        for records in record_lists:
            writer.write_table(records)
        return writer.to_bytes()

    def generate_complex_excel(self, *tables: ComplexExport) -> bytes:
        """Fully configured tables, each on its own sheet (or stacked)."""
        if not tables:
            msg = "No tables provided."
            raise ConfigurationError(msg)
        writer = self._writer()
        for table in tables:
            writer.write_complex(table)
        return writer.to_bytes()

    def generate_report_excel(self, report: ReportExport) -> bytes:
        """A key-value block of generalities followed by configured tables."""
        if report.generalities is None and not report.data:
            msg = "Report has neither generalities nor tables."
            raise ConfigurationError(msg)
        writer = self._writer()
        keyvalue = XLSXKeyValueWriter(writer)
        block = None
        if report.generalities is not None:
            block = keyvalue.write(
                report.generalities,
                report.generalities_sheet,
                report.generalities_special_fields,
            )
        for table in report.data:
            extent = writer.write_complex(table)
            if block is not None:
                keyvalue.fill_specials(
                    block, report.generalities_special_fields, extent
                )
        return writer.to_bytes()


def create_xlsx_wrapper(
    original_model: type[BaseModel],
    metadata_map: dict[str, XLSXMetadata | XLSXImport | tuple],
    table_name: str | None = None,
) -> type[BaseModel]:
    """Create a subclass of `original_model` whose fields carry XLSX metadata.

    Args:
        original_model: The Pydantic model holding the data
        metadata_map: Field name to XLSXMetadata, XLSXImport or a tuple of both
        table_name: Optional table title of the wrapper

    Example:
        ```python
        XLSXSale = create_xlsx_wrapper(Sale, {
            "region": XLSXMetadata(label="Region", order=0),
            "amount": (
                XLSXMetadata(label="Amount", order=1, style=CellStyle.CURRENCY),
                XLSXImport(alias=("Total amount",)),
            ),
        })
        ```
    """
    unknown = set(metadata_map) - set(original_model.model_fields)
    if unknown:
        msg = f"{original_model.__name__} has no fields {', '.join(sorted(unknown))}."
        raise ConfigurationError(msg)

    annotations: dict[str, Any] = {}
    for field_name, metadata in metadata_map.items():
        if not isinstance(metadata, tuple):
            metadata = (metadata,)
        field_type = original_model.model_fields[field_name].annotation
        annotations[field_name] = Annotated[(field_type, *metadata)]

    namespace: dict[str, Any] = {
        "__annotations__": annotations,
        "__module__": original_model.__module__,
        "__qualname__": f"XLSX{original_model.__qualname__}",
    }
    # re-declare defaults, otherwise overriding the annotation makes them required
    for field_name in annotations:
        field_info = original_model.model_fields[field_name]
        if not field_info.is_required():
            namespace[field_name] = field_info.get_default(call_default_factory=True)
    if table_name is not None:
        namespace["xlsx_table_name"] = table_name
        annotations["xlsx_table_name"] = ClassVar[str]
    return type(f"XLSX{original_model.__name__}", (original_model,), namespace)


def export_to_xlsx(
    records: Sequence[BaseModel],
    filepath: Path | str,
    config: ExportConfig | None = None,
) -> None:
    """Write a simple table of `records` to `filepath`."""
    filepath = Path(filepath)
    filepath.write_bytes(XLSXExportBuilder(config).generate_excel(records))
    logger.debug("Saved %d records to %s", len(records), filepath)


def import_from_xlsx(
    data: bytes | Path | str,
    model: type[BaseModel],
    columns: Sequence[ImportColumn] | None = None,
) -> list[BaseModel]:
    """Read records of `model` from the first sheet.

    Without a column configuration the columns written by the exporter for
    `model` are expected.
    """
    reader = XLSXImportReader()
    if columns is None:
        columns = default_import_columns(model, reader.field_analyzer)
    return reader.read(data, columns, model)


def import_from_xlsx_with_search_params(
    data: bytes | Path | str,
    model: type[BaseModel],
    search_model: type[BaseModel],
    columns: Sequence[ImportColumn],
    search_columns: Sequence[ImportColumn],
) -> tuple[list[BaseModel], BaseModel]:
    """Read records plus the key-value block of search parameters above them."""
    return XLSXImportReader().read_with_search_params(
        data, columns, search_columns, model, search_model
    )


def annotate_xlsx(
    data: bytes | Path | str,
    columns: Sequence[ImportColumn],
    results: Sequence[ValidationResult],
    ok_message: str | None = None,
) -> bytes:
    """Return `data` with a status marker per row and comments per cell."""
    annotator = (
        XLSXFeedbackAnnotator(ok_message) if ok_message else XLSXFeedbackAnnotator()
    )
    return annotator.annotate(data, columns, results)


def export_to_csv(records: Sequence[BaseModel], delimiter: str = ";") -> bytes:
    return export_csv(records, delimiter=delimiter)
