# Common pytest fixtures for all test modules
import tempfile
from datetime import date
from decimal import Decimal
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Annotated, ClassVar

import pytest
from openpyxl import Workbook, load_workbook
from pydantic import BaseModel

from xlsxmap import config
from xlsxmap.xlsx_common import (
    CellStyle,
    Formula,
    Operation,
    XLSXImport,
    XLSXMetadata,
)
from xlsxmap.xlsx_import import ImportRecord


# Test Enums
class Region(Enum):
    EAST = "east"
    WEST = "west"
    NORTH = "north"


# Test Models
class Item(BaseModel):
    """Two columns, no title."""

    name: Annotated[str, XLSXMetadata(label="Name", order=0)]
    amount: Annotated[int, XLSXMetadata(label="Amount", order=1, style=CellStyle.NUMBER)]


class RegionAmount(BaseModel):
    """Grouping source for pivot tests."""

    region: Annotated[str, XLSXMetadata(label="Region", order=0)]
    amount: Annotated[int, XLSXMetadata(label="Amount", order=1, style=CellStyle.NUMBER)]


class Sale(BaseModel):
    """Model with a table title and all cell categories."""

    xlsx_table_name: ClassVar[str] = "Sales"

    region: Annotated[Region, XLSXMetadata(label="Region", order=0)]
    amount: Annotated[int, XLSXMetadata(label="Amount", order=1, style=CellStyle.NUMBER)]
    price: Annotated[
        Decimal, XLSXMetadata(label="Price", order=2, style=CellStyle.CURRENCY)
    ]
    sold_on: Annotated[date, XLSXMetadata(label="Sold on", order=3, style=CellStyle.DATE)]
    paid: Annotated[bool, XLSXMetadata(label="Paid", order=4)] = False
    note: Annotated[str | None, XLSXMetadata(label="Note", order=5)] = None


class Line(BaseModel):
    """Model with a row formula field."""

    quantity: Annotated[int, XLSXMetadata(label="Quantity", order=0, style=CellStyle.NUMBER)]
    shipped: Annotated[int, XLSXMetadata(label="Shipped", order=1, style=CellStyle.NUMBER)]
    open_quantity: Annotated[
        int | None,
        XLSXMetadata(
            label="Open",
            order=2,
            style=CellStyle.FORMULA,
            formula=Formula(Operation.SUBTRACTION, (0, 1)),
        ),
    ] = None


class Person(ImportRecord):
    """Import target with aliases and a stop marker."""

    name: Annotated[str, XLSXImport(alias=("Full name",))]
    age: Annotated[int | None, XLSXImport(alias=("Age",))] = None
    city: Annotated[str | None, XLSXImport(alias=("City",))] = None
    end_marker: Annotated[
        str | None, XLSXImport(alias=("END OF LIST",), special=True)
    ] = None


class Generalities(BaseModel):
    """Key-value block of a report."""

    xlsx_table_name: ClassVar[str] = "Summary"

    customer: Annotated[str, XLSXMetadata(label="Customer", order=0)]
    issued: Annotated[date, XLSXMetadata(label="Issued", order=1, style=CellStyle.DATE)]


class SearchParameters(BaseModel):
    customer: Annotated[str, XLSXImport(alias=("Customer",))]
    year: Annotated[int | None, XLSXImport(alias=("Year",))] = None


@pytest.fixture
def sample_items():
    return [Item(name="A", amount=10), Item(name="B", amount=20)]


@pytest.fixture
def sample_regions():
    return [
        RegionAmount(region="east", amount=10),
        RegionAmount(region="west", amount=20),
        RegionAmount(region="east", amount=30),
    ]


@pytest.fixture
def sample_sales():
    return [
        Sale(
            region=Region.EAST,
            amount=3,
            price=Decimal("12.50"),
            sold_on=date(2024, 3, 1),
            paid=True,
            note="first",
        ),
        Sale(
            region=Region.WEST,
            amount=5,
            price=Decimal("7.25"),
            sold_on=date(2024, 3, 15),
        ),
    ]


@pytest.fixture
def temp_file():
    """Temporary file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
        yield Path(f.name)
    Path(f.name).unlink(missing_ok=True)


@pytest.fixture
def make_workbook():
    """Build xlsx bytes from a list of rows (None leaves a cell empty)."""

    def _make(rows, sheet_title="data"):
        wb = Workbook()
        ws = wb.active
        ws.title = sheet_title
        for row in rows:
            ws.append(list(row))
        buffer = BytesIO()
        wb.save(buffer)
        return buffer.getvalue()

    return _make


def open_sheet(data: bytes, sheet=None):
    """Load generated bytes with formulas kept as text."""
    wb = load_workbook(BytesIO(data))
    return wb[sheet] if sheet else wb.worksheets[0]


@pytest.fixture(scope="session")
def datadir():
    """DATADIR as a LocalPath"""
    return Path(__file__).resolve().parent / "data"


@pytest.fixture
def temp_config():
    """
    Provides a temporary config that can be safely changed in test functions.

    After the test the config will be reset to default.
    """
    yield config

    # Reset the globally changed config to default.
    config.load_config()
