"""
Style cache for XLSX export.

Every distinct (category, color) pair used in a workbook is registered once as
an openpyxl NamedStyle and cells refer to it by name. The number of styles in a
generated workbook is therefore bounded by the combinations actually used,
not by the number of cells written.
"""

import logging

from openpyxl.styles import Alignment, Border, Font, NamedStyle, PatternFill, Side
from openpyxl.workbook import Workbook

from .xlsx_common import (
    COMMON_FONT_SIZE,
    CURRENCY_NUMBER_FORMAT,
    DATE_NUMBER_FORMAT,
    HEADER_FONT_SIZE,
    PERCENTAGE_NUMBER_FORMAT,
    TITLE_FONT_SIZE,
    CellStyle,
)

logger = logging.getLogger(__name__)

STYLE_PREFIX = "xlsxmap"

_THIN = Side(style="thin")
_NUMBER_FORMATS = {
    CellStyle.DATE: DATE_NUMBER_FORMAT,
    CellStyle.CURRENCY: CURRENCY_NUMBER_FORMAT,
    CellStyle.PERCENTAGE: PERCENTAGE_NUMBER_FORMAT,
}


def normalize_color(color: str | None) -> str | None:
    """Return an upper-case RGB/aRGB hex string without a leading '#'."""
    if not color:
        return None
    return color.lstrip("#").upper()


class XLSXStyleCache:
    """Creates named styles on demand and hands out their names.

    One cache belongs to one workbook.
    """

    def __init__(
        self,
        workbook: Workbook,
        font_name: str = "Arial",
        header_color: str = "DDEBF7",
    ):
        self.workbook = workbook
        self.font_name = font_name
        self.header_color = normalize_color(header_color)
        self._styles: dict[tuple[CellStyle, str | None], str] = {}
        self._formula_styles: dict[tuple[CellStyle, str | None], str] = {}
        self._fixed_styles: dict[str, str] = {}

    @property
    def style_count(self) -> int:
        """Number of named styles created by this cache."""
        return (
            len(self._styles) + len(self._formula_styles) + len(self._fixed_styles)
        )

    def style_for(self, category: CellStyle, color: str | None = None) -> str:
        """Name of the style for plain data cells of a category."""
        key = (category, normalize_color(color))
        name = self._styles.get(key)
        if name is None:
            style = self._data_style(f"{STYLE_PREFIX}-{category.value}", category)
            name = self._register(style, key[1])
            self._styles[key] = name
        return name

    def formula_style_for(self, category: CellStyle, color: str | None = None) -> str:
        """Name of the bold style used for computed cells of a category."""
        key = (category, normalize_color(color))
        name = self._formula_styles.get(key)
        if name is None:
            style = self._data_style(
                f"{STYLE_PREFIX}-formula-{category.value}", category
            )
            style.font = Font(name=self.font_name, size=COMMON_FONT_SIZE, bold=True)
            name = self._register(style, key[1])
            self._formula_styles[key] = name
        return name

    def header_style(self) -> str:
        return self._fixed("header", self._make_header_style)

    def title_style(self) -> str:
        return self._fixed("title", self._make_title_style)

    def label_style(self, bold: bool = False) -> str:
        """Borderless style used for reference labels and key-value titles."""
        key = "label-bold" if bold else "label"
        return self._fixed(key, lambda name: self._make_label_style(name, bold))

    def _fixed(self, key: str, factory) -> str:
        name = self._fixed_styles.get(key)
        if name is None:
            name = self._register(factory(f"{STYLE_PREFIX}-{key}"), None)
            self._fixed_styles[key] = name
        return name

    def _register(self, style: NamedStyle, color: str | None) -> str:
        if color is not None:
            style.fill = PatternFill(fill_type="solid", fgColor=color)
            style.name = f"{style.name}-{color}"
        self.workbook.add_named_style(style)
        logger.debug("Registered named style %s", style.name)
        return style.name

    def _bordered(
        self, name: str, font: Font, horizontal: str, number_format: str = "General"
    ) -> NamedStyle:
        return NamedStyle(
            name=name,
            font=font,
            border=Border(left=_THIN, right=_THIN, top=_THIN, bottom=_THIN),
            alignment=Alignment(horizontal=horizontal, vertical="center", wrap_text=True),
            number_format=number_format,
        )

    def _data_style(self, name: str, category: CellStyle) -> NamedStyle:
        horizontal = "right" if category is CellStyle.CURRENCY else "left"
        return self._bordered(
            name,
            Font(name=self.font_name, size=COMMON_FONT_SIZE),
            horizontal,
            _NUMBER_FORMATS.get(category, "General"),
        )

    def _make_header_style(self, name: str) -> NamedStyle:
        style = self._bordered(
            name,
            Font(name=self.font_name, size=HEADER_FONT_SIZE, bold=True),
            "center",
        )
        if self.header_color:
            style.fill = PatternFill(fill_type="solid", fgColor=self.header_color)
        return style

    def _make_title_style(self, name: str) -> NamedStyle:
        return self._bordered(
            name,
            Font(name=self.font_name, size=TITLE_FONT_SIZE, bold=True),
            "center",
        )

    def _make_label_style(self, name: str, bold: bool) -> NamedStyle:
        return NamedStyle(
            name=name,
            font=Font(name=self.font_name, size=COMMON_FONT_SIZE, bold=bold),
            alignment=Alignment(horizontal="left", wrap_text=True),
        )
