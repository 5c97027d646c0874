"""Tests for the style cache."""

from openpyxl import Workbook

from xlsxmap.xlsx_api import XLSXExportBuilder
from xlsxmap.xlsx_common import CellStyle
from xlsxmap.xlsx_styles import XLSXStyleCache, normalize_color
from xlsxmap.xlsx_table import XLSXTableWriter

from .conftest import open_sheet


class TestStyleCache:
    def test_same_key_creates_one_style(self):
        cache = XLSXStyleCache(Workbook())
        first = cache.style_for(CellStyle.NUMBER)
        for _ in range(100):
            assert cache.style_for(CellStyle.NUMBER) == first
        assert cache.style_count == 1

    def test_color_is_part_of_the_key(self):
        workbook = Workbook()
        cache = XLSXStyleCache(workbook)
        plain = cache.style_for(CellStyle.TEXT)
        red = cache.style_for(CellStyle.TEXT, "#ff0000")
        assert plain != red
        assert cache.style_for(CellStyle.TEXT, "FF0000") == red
        assert cache.style_count == 2
        assert red in workbook.named_styles

    def test_formula_styles_are_bold_and_separate(self):
        workbook = Workbook()
        cache = XLSXStyleCache(workbook)
        data = cache.style_for(CellStyle.CURRENCY)
        formula = cache.formula_style_for(CellStyle.CURRENCY)
        assert data != formula
        ws = workbook.active
        ws["A1"].style = formula
        assert ws["A1"].font.b is True
        assert ws["A1"].number_format == "#,##0.00 €"

    def test_number_formats(self):
        workbook = Workbook()
        cache = XLSXStyleCache(workbook)
        ws = workbook.active
        ws["A1"].style = cache.style_for(CellStyle.DATE)
        ws["A2"].style = cache.style_for(CellStyle.PERCENTAGE)
        assert ws["A1"].number_format == "DD/MM/YYYY"
        assert ws["A2"].number_format == "0.00%"

    def test_fixed_styles(self):
        cache = XLSXStyleCache(Workbook(), font_name="Calibri", header_color="#ddebf7")
        assert cache.header_style() == cache.header_style()
        assert cache.label_style(bold=True) != cache.label_style()
        assert cache.title_style()
        assert cache.style_count == 4

    def test_normalize_color(self):
        assert normalize_color("#abc123") == "ABC123"
        assert normalize_color(None) is None
        assert normalize_color("") is None


class TestStyleCountIdempotence:
    def test_independent_builders_create_same_number_of_styles(self, sample_sales):
        counts = []
        for _ in range(2):
            writer = XLSXTableWriter()
            writer.write_table(sample_sales)
            counts.append(writer.styles.style_count)
        assert counts[0] == counts[1]

    def test_style_count_does_not_grow_with_rows(self, sample_sales):
        small = XLSXTableWriter()
        small.write_table(sample_sales)
        large = XLSXTableWriter()
        large.write_table(sample_sales * 50)
        assert small.styles.style_count == large.styles.style_count

    def test_builder_output_is_loadable(self, sample_sales):
        data = XLSXExportBuilder().generate_excel(sample_sales)
        assert data[:2] == b"PK"
        assert open_sheet(data).title == "export"
