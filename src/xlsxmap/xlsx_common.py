"""
Common XLSX functionality shared by export, import and feedback.

This module contains shared infrastructure including:
- Enumerations for cell categories, formula operations, orientation and row status
- Field metadata declarations (export, import and row formulas)
- Field analysis turning declarations into cached FieldSpecs
- Serialization engine for converting Python values to/from Excel values
- Exception classes
- Builder configuration
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Union, get_args, get_origin

from pydantic import BaseModel
from pydantic_core import PydanticUndefined

logger = logging.getLogger(__name__)

# Excel number formats and the matching text pattern used on import
DATE_NUMBER_FORMAT = "DD/MM/YYYY"
DATE_TEXT_PATTERN = "%d/%m/%Y"
CURRENCY_NUMBER_FORMAT = "#,##0.00 €"
PERCENTAGE_NUMBER_FORMAT = "0.00%"

# Placeholder token replaced by column ranges in custom formula templates
PLACEHOLDER = "?"
DEFAULT_OK_MESSAGE = "IMPORT OK"

HEADER_ROW_HEIGHT = 44
TITLE_ROW_HEIGHT = 48
HEADER_FONT_SIZE = 11
TITLE_FONT_SIZE = 12
COMMON_FONT_SIZE = 10


# Exception classes
class XLSXMappingError(ValueError):
    """Base class for all errors raised while mapping records to or from XLSX."""


class ConfigurationError(XLSXMappingError):
    """Raised for empty configuration, empty record lists or unknown options."""


class MissingRequiredColumnError(XLSXMappingError):
    """Raised when a required import column is not found in the header row."""

    def __init__(self, column_title: str):
        self.column_title = column_title
        super().__init__(f"Missing required column '{column_title}' in header row.")


class MissingRequiredValueError(XLSXMappingError):
    """Raised when a required column has no usable value in a data row."""

    def __init__(self, column_title: str, row: int):
        self.column_title = column_title
        self.row = row
        super().__init__(
            f"Missing required value for column '{column_title}' - row: {row}"
        )


class CellCoercionError(XLSXMappingError):
    """Raised when a cell value cannot be converted to the field type."""

    def __init__(self, field_name: str, value: Any, original_error: Exception):
        self.field_name = field_name
        self.value = value
        self.original_error = original_error
        super().__init__(
            f"Error converting field '{field_name}' with value '{value}': {original_error}"
        )


class UnresolvedFormulaReferenceError(XLSXMappingError):
    """Raised when a formula references a column the record type does not export."""

    def __init__(self, column: str):
        self.column = column
        super().__init__(f"Cannot resolve column '{column}' for formula.")


class XLSXSerializationError(XLSXMappingError):
    """Raised when a field value cannot be written to a cell."""

    def __init__(self, field_name: str, value: Any, original_error: Exception):
        self.field_name = field_name
        self.value = value
        self.original_error = original_error
        super().__init__(
            f"Error serializing field '{field_name}' with value '{value}': {original_error}"
        )


# Enumerations
class CellStyle(Enum):
    """Data category of a cell, selects number format and alignment."""

    TEXT = "text"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    PERCENTAGE = "percentage"
    FORMULA = "formula"


class Operation(Enum):
    """Operations available for special columns and row formulas."""

    SUM = "sum"
    SUBTRACTION = "subtraction"
    DIVISION = "division"
    CUSTOM = "custom"


class Orientation(Enum):
    """Placement of consecutive tables on one sheet.

    VERTICAL: tables are stacked below each other
    HORIZONTAL: tables are packed side by side sharing the same rows
    """

    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"


class RowStatus(Enum):
    """Classification of an imported row."""

    EMPTY = "empty"
    VALUES = "values"
    SPECIAL = "special"


class ValidationStatus(Enum):
    """Outcome of a later validation step for an imported row."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


# Metadata and field analysis
@dataclass(frozen=True)
class Formula:
    """Row-level formula combining other columns of the same row.

    `fields` are the orders of the referenced columns, `style` the category
    used to format the result.
    """

    operation: Operation
    fields: tuple[int, ...]
    style: CellStyle = CellStyle.NUMBER


@dataclass(frozen=True)
class XLSXMetadata:
    """Export metadata for Pydantic fields."""

    label: str | None = None
    order: int = 0
    style: CellStyle = CellStyle.TEXT
    color: str | None = None
    formula: Formula | None = None


@dataclass(frozen=True)
class XLSXImport:
    """Import metadata for Pydantic fields.

    A field flagged `special` is never filled from a cell. Instead, a cell whose
    text equals one of its aliases marks the row as a sentinel row.
    """

    alias: tuple[str, ...] = ()
    order: int | None = None
    special: bool = False


@dataclass(frozen=True)
class FieldSpec:
    """Runtime description of one exported and/or imported field."""

    name: str
    field_type: Any
    label: str
    order: int | None = None
    style: CellStyle = CellStyle.TEXT
    color: str | None = None
    required: bool = False
    aliases: tuple[str, ...] = ()
    formula: Formula | None = None
    special: bool = False
    import_order: int | None = None

    @property
    def exported(self) -> bool:
        return self.order is not None and not self.special

    @property
    def cell_style(self) -> CellStyle:
        """Category used to format cells of this field."""
        if self.style is CellStyle.FORMULA and self.formula is not None:
            return self.formula.style
        return self.style


class XLSXFieldAnalyzer:
    """Analyzes Pydantic model fields and caches the result per model.

    One analyzer lives for one export or import call.
    """

    def __init__(self):
        self._cache: dict[type[BaseModel], list[FieldSpec]] = {}

    def analyze_model(self, model: type[BaseModel]) -> list[FieldSpec]:
        """Return all declared field specs sorted by order."""
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            msg = f"Expected Pydantic BaseModel, got {model!r}"
            raise TypeError(msg)

        cached = self._cache.get(model)
        if cached is not None:
            return cached

        specs = []
        for field_name, field_info in model.model_fields.items():
            spec = self.analyze_field(field_name, field_info)
            if spec is not None:
                specs.append(spec)

        specs.sort(key=_sort_key)
        self._check_orders(model, specs)
        self._cache[model] = specs
        logger.debug(
            "Analyzed %s: %s", model.__name__, ", ".join(s.name for s in specs)
        )
        return specs

    def analyze_field(self, field_name: str, field_info: Any) -> FieldSpec | None:
        """Build the FieldSpec of a single field; None if the field has no metadata."""
        export_meta = self.extract_metadata(field_info, XLSXMetadata)
        import_meta = self.extract_metadata(field_info, XLSXImport)
        if export_meta is None and import_meta is None:
            return None

        if (
            export_meta is not None
            and export_meta.style is CellStyle.FORMULA
            and export_meta.formula is None
        ):
            msg = f"Field '{field_name}' has style FORMULA but no formula declared."
            raise ConfigurationError(msg)

        field_type = field_info.annotation
        label = (
            export_meta.label
            if export_meta is not None and export_meta.label
            else " ".join(word.capitalize() for word in field_name.split("_"))
        )
        return FieldSpec(
            name=field_name,
            field_type=field_type,
            label=label,
            order=export_meta.order if export_meta is not None else None,
            style=export_meta.style if export_meta is not None else CellStyle.TEXT,
            color=export_meta.color if export_meta is not None else None,
            required=self.is_required(field_info),
            aliases=tuple(import_meta.alias) if import_meta is not None else (),
            formula=export_meta.formula if export_meta is not None else None,
            special=import_meta.special if import_meta is not None else False,
            import_order=import_meta.order if import_meta is not None else None,
        )

    @staticmethod
    def extract_metadata(field_info: Any, kind: type) -> Any:
        """Extract metadata of the given kind from field info."""
        # First check if Pydantic v2 has already processed the metadata
        if hasattr(field_info, "metadata") and field_info.metadata:
            for metadata_item in field_info.metadata:
                if isinstance(metadata_item, kind):
                    return metadata_item

        # Fallback: check if the annotation is still Annotated
        if (
            hasattr(field_info, "annotation")
            and get_origin(field_info.annotation) is Annotated
        ):
            for metadata_item in get_args(field_info.annotation)[1:]:
                if isinstance(metadata_item, kind):
                    return metadata_item

        return None

    @staticmethod
    def is_optional_type(field_type: Any) -> bool:
        """Check if a type is Optional (Union with None)."""
        origin = get_origin(field_type)
        if origin is Union:
            args = get_args(field_type)
            return len(args) == 2 and type(None) in args  # noqa: PLR2004
        # Handle Python 3.10+ union syntax (str | None)
        if hasattr(field_type, "__args__"):
            args = field_type.__args__
            return len(args) == 2 and type(None) in args  # noqa: PLR2004
        return False

    @staticmethod
    def is_required(field_info: Any) -> bool:
        """A field is required if it is not Optional and has no default."""
        has_default = (
            getattr(field_info, "default", PydanticUndefined) is not PydanticUndefined
            or getattr(field_info, "default_factory", None) is not None
        )
        return not XLSXFieldAnalyzer.is_optional_type(
            field_info.annotation
        ) and not has_default

    def export_fields(self, model: type[BaseModel]) -> list[FieldSpec]:
        """Fields written on export, sorted by order."""
        return [spec for spec in self.analyze_model(model) if spec.exported]

    def resolve_export(self, model: type[BaseModel], alias: str) -> FieldSpec | None:
        """Find an exported field by its label or field name."""
        if not alias:
            return None
        for spec in self.export_fields(model):
            if alias in (spec.label, spec.name):
                return spec
        return None

    def resolve_import(
        self,
        model: type[BaseModel],
        target_field: str | None,
        column_order: int | None = None,
    ) -> FieldSpec | None:
        """Find the field filled from an import column.

        Matches an import alias or the field name first, then the declared
        order. Export labels are accepted for fields without import metadata.
        Special fields never match.
        """
        candidates = [spec for spec in self.analyze_model(model) if not spec.special]
        if target_field:
            for spec in candidates:
                if target_field == spec.name or target_field in spec.aliases:
                    return spec
            for spec in candidates:
                if not spec.aliases and target_field == spec.label:
                    return spec
        if column_order is not None:
            for spec in candidates:
                order = spec.import_order if spec.import_order is not None else spec.order
                if order == column_order:
                    return spec
        return None

    def resolve_special(self, model: type[BaseModel], value: Any) -> FieldSpec | None:
        """Find the special field whose alias equals the cell text."""
        if value is None:
            return None
        text = str(value).strip()
        if not text:
            return None
        for spec in self.analyze_model(model):
            if spec.special and text in spec.aliases:
                return spec
        return None

    def min_order(self, model: type[BaseModel]) -> int:
        orders = [spec.order for spec in self.export_fields(model)]
        return min(orders) if orders else 0

    def max_order(self, model: type[BaseModel]) -> int:
        orders = [spec.order for spec in self.export_fields(model)]
        return max(orders) if orders else 0

    @staticmethod
    def table_name(model: type[BaseModel]) -> str | None:
        """Title declared on the model with the `xlsx_table_name` class variable."""
        return getattr(model, "xlsx_table_name", None)

    @staticmethod
    def _check_orders(model: type[BaseModel], specs: list[FieldSpec]) -> None:
        seen: dict[int, str] = {}
        for spec in specs:
            if not spec.exported:
                continue
            if spec.order in seen:
                msg = (
                    f"Fields '{seen[spec.order]}' and '{spec.name}' of "
                    f"{model.__name__} share the order {spec.order}."
                )
                raise ConfigurationError(msg)
            seen[spec.order] = spec.name


def _sort_key(spec: FieldSpec) -> tuple[bool, int]:
    if spec.order is not None:
        return (False, spec.order)
    return (True, spec.import_order if spec.import_order is not None else 0)


def unwrap_optional(field_type: Any) -> Any:
    """Return the inner type of Optional[X], otherwise the type itself."""
    if XLSXFieldAnalyzer.is_optional_type(field_type):
        return next(arg for arg in get_args(field_type) if arg is not type(None))
    return field_type


class XLSXConverters:
    """Converter functions for values without a native Excel representation."""

    # Boolean converters
    @staticmethod
    def bool_to_yes_no(value: bool) -> str:
        """Convert boolean to Yes/No string."""
        return "Yes" if value else "No"

    @staticmethod
    def yes_no_to_bool(value: str) -> bool:
        """Convert Yes/No string to boolean."""
        value = value.strip().lower()
        if value in ("yes", "y", "true", "1", "si"):
            return True
        if value in ("no", "n", "false", "0"):
            return False
        msg = (
            f"Cannot convert '{value}' to boolean. Expected Yes/No, True/False, or 1/0."
        )
        raise ValueError(msg)

    # Date converters
    @staticmethod
    def text_to_date(value: str) -> date:
        """Convert DD/MM/YYYY text (or ISO date) to date."""
        text = value.strip()
        try:
            return datetime.strptime(text, DATE_TEXT_PATTERN).date()
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError as e:
            msg = f"Cannot parse '{value}' as date (expected DD/MM/YYYY)."
            raise ValueError(msg) from e

    # Number converters
    @staticmethod
    def text_to_decimal(value: str) -> Decimal:
        """Convert numeric text to Decimal.

        Accepts plain numbers ("1234.5") and numbers with thousands grouping and
        decimal comma ("1.234,5"). If both separators occur, the last one is the
        decimal separator. A single comma is a decimal comma; repeated dots are
        thousands separators.
        """
        text = value.strip().replace(" ", "").replace("\u00a0", "")
        if "," in text and "." in text:
            if text.rfind(",") > text.rfind("."):
                text = text.replace(".", "").replace(",", ".")
            else:
                text = text.replace(",", "")
        elif "," in text:
            if text.count(",") > 1:
                text = text.replace(",", "")
            else:
                text = text.replace(",", ".")
        elif text.count(".") > 1:
            text = text.replace(".", "")
        if not re.fullmatch(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", text):
            msg = f"Cannot parse '{value}' as number."
            raise ValueError(msg)
        try:
            return Decimal(text)
        except InvalidOperation as e:
            msg = f"Cannot parse '{value}' as number."
            raise ValueError(msg) from e


# Serialization engine
class XLSXSerializationEngine:
    """Centralized conversion between field values and cell values."""

    def serialize_value(self, value: Any) -> Any:
        """Convert a field value to a value openpyxl stores natively."""
        if value is None:
            return None

        # Handle Enum types BEFORE basic types (str, Enum subclasses are also str)
        if isinstance(value, Enum):
            return value.value

        if isinstance(value, bool):
            return XLSXConverters.bool_to_yes_no(value)

        # Handle basic types that Excel supports natively
        if isinstance(value, int | float | Decimal | str | date | datetime):
            return value

        # For complex types, convert to string representation
        if isinstance(value, list | dict):
            return json.dumps(value, default=str, ensure_ascii=False)

        return str(value)

    def deserialize_value(self, raw_value: Any, spec: FieldSpec) -> Any:
        """Coerce a cell value to the declared type of the field.

        Returns None for blank cells. Raises CellCoercionError if the value
        cannot be converted.
        """
        if raw_value is None or (isinstance(raw_value, str) and not raw_value.strip()):
            return None
        if isinstance(raw_value, str):
            raw_value = raw_value.strip()

        field_type = unwrap_optional(spec.field_type)
        try:
            return self._convert(raw_value, field_type)
        except (ValueError, TypeError, ArithmeticError) as e:
            raise CellCoercionError(spec.name, raw_value, e) from e

    def _convert(self, raw_value: Any, field_type: Any) -> Any:
        if field_type is None or field_type is Any:
            return raw_value

        if isinstance(field_type, type) and issubclass(field_type, Enum):
            return self._convert_enum(raw_value, field_type)

        type_converters = {
            Decimal: self._convert_decimal,
            int: lambda x: int(
                self._convert_decimal(x).quantize(Decimal(1), rounding=ROUND_HALF_UP)
            ),
            float: lambda x: float(self._convert_decimal(x)),
            str: self._convert_str,
            bool: self._convert_bool,
            datetime: self._convert_datetime,
            date: self._convert_date,
        }
        if field_type in type_converters:
            return type_converters[field_type](raw_value)

        return raw_value

    @staticmethod
    def _convert_decimal(raw_value: Any) -> Decimal:
        if isinstance(raw_value, bool):
            msg = f"Cannot use boolean '{raw_value}' as number."
            raise TypeError(msg)
        if isinstance(raw_value, Decimal):
            return raw_value
        if isinstance(raw_value, int | float):
            return Decimal(str(raw_value))
        if isinstance(raw_value, str):
            return XLSXConverters.text_to_decimal(raw_value)
        msg = f"Cannot use {type(raw_value).__name__} '{raw_value}' as number."
        raise TypeError(msg)

    @staticmethod
    def _convert_str(raw_value: Any) -> str:
        if isinstance(raw_value, float) and raw_value.is_integer():
            return str(int(raw_value))
        if isinstance(raw_value, datetime) and raw_value.time() == datetime.min.time():
            return raw_value.date().strftime(DATE_TEXT_PATTERN)
        if isinstance(raw_value, date):
            return raw_value.strftime(DATE_TEXT_PATTERN)
        return str(raw_value)

    @staticmethod
    def _convert_bool(raw_value: Any) -> bool:
        if isinstance(raw_value, bool):
            return raw_value
        if isinstance(raw_value, int | float):
            return bool(raw_value)
        return XLSXConverters.yes_no_to_bool(str(raw_value))

    @staticmethod
    def _convert_date(raw_value: Any) -> date:
        if isinstance(raw_value, datetime):
            return raw_value.date()
        if isinstance(raw_value, date):
            return raw_value
        return XLSXConverters.text_to_date(str(raw_value))

    @staticmethod
    def _convert_datetime(raw_value: Any) -> datetime:
        if isinstance(raw_value, datetime):
            return raw_value
        if isinstance(raw_value, date):
            return datetime.combine(raw_value, datetime.min.time())
        return datetime.combine(
            XLSXConverters.text_to_date(str(raw_value)), datetime.min.time()
        )

    @staticmethod
    def _convert_enum(raw_value: Any, enum_type: type[Enum]) -> Enum:
        for enum_item in enum_type:
            if enum_item.value == raw_value or str(enum_item.value) == str(raw_value):
                return enum_item
        msg = f"Invalid enum value '{raw_value}'"
        raise ValueError(msg)


# Builder configuration
@dataclass
class ExportConfig:
    """Configuration of an export builder.

    All values are defaulted. Freeze panes are only applied for vertical
    orientation; (0, 0) means no frozen panes.
    """

    font_name: str = "Arial"
    header_color: str = "DDEBF7"
    orientation: Orientation = Orientation.VERTICAL
    distance_table: int = 1
    col_freeze_pane: int = 0
    row_freeze_pane: int = 0

    def __post_init__(self):
        if isinstance(self.orientation, str):
            try:
                self.orientation = Orientation(self.orientation.lower())
            except ValueError as e:
                msg = f"Unknown orientation: {self.orientation}"
                raise ConfigurationError(msg) from e
        if not isinstance(self.orientation, Orientation):
            msg = f"Unknown orientation: {self.orientation}"
            raise ConfigurationError(msg)
        if self.distance_table < 0:
            msg = f"distance_table must not be negative, got {self.distance_table}."
            raise ConfigurationError(msg)
        if self.col_freeze_pane < 0 or self.row_freeze_pane < 0:
            msg = "Freeze pane column and row must not be negative."
            raise ConfigurationError(msg)
