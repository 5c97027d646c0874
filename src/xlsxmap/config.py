"""Config module to share a column and export configuration across xlsxmap."""

import logging
import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, StringConstraints, create_model, model_validator
from typing_extensions import Self

from xlsxmap.xlsx_common import (
    CellStyle,
    ExportConfig,
    Orientation,
    XLSXImport,
    XLSXMetadata,
)
from xlsxmap.xlsx_import import ImportColumn, ImportRecord

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

PYTHON_TYPES = {
    "str": str,
    "int": int,
    "float": float,
    "decimal": Decimal,
    "date": date,
    "datetime": datetime,
    "bool": bool,
}
DEFAULT_STYLES = {
    "int": CellStyle.NUMBER,
    "float": CellStyle.NUMBER,
    "decimal": CellStyle.NUMBER,
    "date": CellStyle.DATE,
    "datetime": CellStyle.DATE,
}

# === Configuration imported from a toml file stored as pydantic model ===


class ColumnSettings(BaseModel):
    target_field: Annotated[
        str, StringConstraints(pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    ]
    title: Annotated[str, StringConstraints(min_length=1)]
    type: Literal["str", "int", "float", "decimal", "date", "datetime", "bool"] = "str"
    style: CellStyle | None = None
    required: bool = False
    column_order: Annotated[int, Field(ge=0)] | None = None
    start_row: Annotated[int, Field(ge=1)] | None = None
    start_column: Annotated[int, Field(ge=1)] | None = None
    id: str | None = None

    @property
    def python_type(self) -> type:
        return PYTHON_TYPES[self.type]

    def to_import_column(self) -> ImportColumn:
        return ImportColumn(
            target_field=self.target_field,
            title=self.title,
            required=self.required,
            column_order=self.column_order,
            start_row=self.start_row,
            start_column=self.start_column,
            id=self.id,
        )


class ExportSettings(BaseModel):
    font_name: str = "Arial"
    header_color: Annotated[
        str, StringConstraints(pattern=r"^#?([0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")
    ] = "DDEBF7"
    orientation: Orientation = Orientation.VERTICAL
    distance_table: Annotated[int, Field(ge=0)] = 1
    col_freeze_pane: Annotated[int, Field(ge=0)] = 0
    row_freeze_pane: Annotated[int, Field(ge=0)] = 0

    def to_export_config(self) -> ExportConfig:
        return ExportConfig(**self.model_dump())


class XlsxmapConfig(BaseModel):
    config_version: str = ""
    columns: list[ColumnSettings] = []
    search_columns: list[ColumnSettings] = []
    export: ExportSettings = ExportSettings()
    default_config: bool = False

    @model_validator(mode="after")
    def check_unique_columns(self) -> Self:
        for kind in ("columns", "search_columns"):
            names = [column.target_field for column in getattr(self, kind)]
            duplicates = sorted({name for name in names if names.count(name) > 1})
            if duplicates:
                msg = f"Duplicate target_field in {kind}: {', '.join(duplicates)}"
                raise ValueError(msg)
            orders = [
                column.column_order
                for column in getattr(self, kind)
                if column.column_order is not None
            ]
            if len(orders) != len(set(orders)):
                msg = f"Duplicate column_order in {kind}."
                raise ValueError(msg)
        return self

    def import_columns(self) -> list[ImportColumn]:
        return [column.to_import_column() for column in self.columns]

    def search_import_columns(self) -> list[ImportColumn]:
        return [column.to_import_column() for column in self.search_columns]

    def record_model(self, name: str = "Record") -> type[BaseModel]:
        """Pydantic model with one field per configured column."""
        return _build_model(name, self.columns, ImportRecord)

    def search_model(self, name: str = "SearchParameters") -> type[BaseModel]:
        return _build_model(name, self.search_columns, BaseModel)


def _build_model(
    name: str, columns: list[ColumnSettings], base: type[BaseModel]
) -> type[BaseModel]:
    fields = {}
    used_orders = {c.column_order for c in columns if c.column_order is not None}
    free_orders = (n for n in range(len(columns) * 2) if n not in used_orders)
    for column in columns:
        order = (
            column.column_order if column.column_order is not None else next(free_orders)
        )
        metadata = XLSXMetadata(
            label=column.title,
            order=order,
            style=column.style or DEFAULT_STYLES.get(column.type, CellStyle.TEXT),
        )
        if column.required:
            field_type = Annotated[column.python_type, metadata, XLSXImport()]
            fields[column.target_field] = (field_type, ...)
        else:
            field_type = Annotated[column.python_type | None, metadata, XLSXImport()]
            fields[column.target_field] = (field_type, None)
    return create_model(name, __base__=base, **fields)


# These parameters will be updated/set by load_config.
SETTINGS = XlsxmapConfig(default_config=True)
SETTINGS_PATH: Path | None = None


def load_config(config_file: Path | None = None, config: XlsxmapConfig | None = None):
    new_conf = {}
    new_conf["SETTINGS_PATH"] = None
    if config_file is not None and not config_file.exists():
        logger.warning('Configuration file "%s" not found.', config_file)
    if (True if config_file is None else not config_file.exists()) and config is None:
        new_conf["SETTINGS"] = XlsxmapConfig(default_config=True)
        logger.debug("Initializing default config.")
    elif config_file and config is None:
        with config_file.open(mode="rb") as fp:
            conf = tomllib.load(fp)
        logger.debug("Config loaded from: %s", config_file)
        new_conf["SETTINGS"] = XlsxmapConfig(**conf)
        new_conf["SETTINGS_PATH"] = config_file.resolve()
    else:
        new_conf["SETTINGS"] = XlsxmapConfig.model_validate_json(
            config.model_dump_json()
        )
        logger.debug("Refreshing global state of config.")

    for name, value in new_conf.items():
        globals()[name] = value
