"""Plain CSV dump of exported fields."""

import csv
import io
import logging
from collections.abc import Sequence

from pydantic import BaseModel

from .xlsx_common import ConfigurationError, XLSXFieldAnalyzer, XLSXSerializationEngine

logger = logging.getLogger(__name__)


def export_csv(
    records: Sequence[BaseModel],
    delimiter: str = ";",
    analyzer: XLSXFieldAnalyzer | None = None,
) -> bytes:
    """Write the exported fields of `records` as UTF-8 CSV.

    Columns follow the field order and the header row holds the labels.
    Formula fields are left out since there is nothing to compute them.
    """
    if not records:
        msg = "No records provided for CSV export."
        raise ConfigurationError(msg)
    analyzer = analyzer or XLSXFieldAnalyzer()
    serializer = XLSXSerializationEngine()
    specs = [
        spec
        for spec in analyzer.export_fields(type(records[0]))
        if spec.formula is None
    ]

    buffer = io.StringIO()
    writer = csv.writer(
        buffer, delimiter=delimiter, quotechar='"', quoting=csv.QUOTE_MINIMAL
    )
    writer.writerow([spec.label for spec in specs])
    for record in records:
        row = []
        for spec in specs:
            value = serializer.serialize_value(getattr(record, spec.name, None))
            row.append("" if value is None else str(value))
        writer.writerow(row)
    logger.debug("Exported %d records to CSV", len(records))
    return buffer.getvalue().encode("utf-8")
