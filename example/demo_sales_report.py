#!/usr/bin/env python3
"""
Demo: Sales report with totals, pivot and feedback

This demo writes a small sales report and reads it back.

Features demonstrated:
- Table export with title, typed cells and a row formula column
- Total rows below a table
- Pivot table with conditional sums on its own sheet
- Report with a key-value block whose totals reference the data table
- Import with fuzzy header matching and a stop marker
- Feedback pass marking the rows of the imported file
- CSV dump of the same records
"""

import sys
import traceback
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Annotated, ClassVar

from pydantic import BaseModel

from xlsxmap.xlsx_api import (
    XLSXExportBuilder,
    annotate_xlsx,
    export_to_csv,
    import_from_xlsx,
)
from xlsxmap.xlsx_common import (
    CellStyle,
    ExportConfig,
    Formula,
    Operation,
    ValidationStatus,
    XLSXImport,
    XLSXMetadata,
)
from xlsxmap.xlsx_feedback import ValidationResult
from xlsxmap.xlsx_import import ImportColumn, ImportRecord
from xlsxmap.xlsx_table import (
    ComplexExport,
    Pivot,
    ReferenceLabel,
    ReportExport,
    SpecialField,
)


class Region(Enum):
    NORTH = "north"
    SOUTH = "south"
    WEST = "west"


class Sale(BaseModel):
    xlsx_table_name: ClassVar[str] = "Sales 2024"

    region: Annotated[Region, XLSXMetadata(label="Region", order=0)]
    product: Annotated[str, XLSXMetadata(label="Product", order=1)]
    quantity: Annotated[int, XLSXMetadata(label="Quantity", order=2, style=CellStyle.NUMBER)]
    price: Annotated[
        Decimal, XLSXMetadata(label="Unit price", order=3, style=CellStyle.CURRENCY)
    ]
    sold_on: Annotated[date, XLSXMetadata(label="Sold on", order=4, style=CellStyle.DATE)]
    paid: Annotated[bool, XLSXMetadata(label="Paid", order=5, color="#E2EFDA")] = False
    per_unit: Annotated[
        Decimal | None,
        XLSXMetadata(
            label="Quantity per price",
            order=6,
            style=CellStyle.FORMULA,
            formula=Formula(Operation.DIVISION, (2, 3)),
        ),
    ] = None


class Summary(BaseModel):
    xlsx_table_name: ClassVar[str] = "Summary"

    customer: Annotated[str, XLSXMetadata(label="Customer", order=0)]
    period: Annotated[str, XLSXMetadata(label="Period", order=1)]


class ImportedSale(ImportRecord):
    """Import target reading a subset of the exported columns."""

    region: Annotated[Region, XLSXImport(alias=("Region",))]
    quantity: Annotated[int, XLSXImport(alias=("Quantity",))]
    paid: Annotated[bool | None, XLSXImport(alias=("Paid",))] = None
    total_marker: Annotated[
        str | None, XLSXImport(alias=("Total",), special=True)
    ] = None


def create_sample_data() -> list[Sale]:
    return [
        Sale(
            region=Region.NORTH,
            product="Desk",
            quantity=3,
            price=Decimal("249.00"),
            sold_on=date(2024, 1, 12),
            paid=True,
        ),
        Sale(
            region=Region.SOUTH,
            product="Chair",
            quantity=12,
            price=Decimal("89.90"),
            sold_on=date(2024, 2, 3),
        ),
        Sale(
            region=Region.NORTH,
            product="Lamp",
            quantity=7,
            price=Decimal("34.50"),
            sold_on=date(2024, 2, 17),
            paid=True,
        ),
        Sale(
            region=Region.WEST,
            product="Desk",
            quantity=1,
            price=Decimal("249.00"),
            sold_on=date(2024, 3, 2),
        ),
    ]


def demo_table_with_totals(sales: list[Sale], outdir: Path) -> Path:
    """Table with a total row and a pivot by region on a second sheet."""

    print("\n" + "=" * 50)
    print("1. Table with totals and pivot")
    print("=" * 50)

    table = ComplexExport(
        records=sales,
        sheet="sales",
        reference_labels=[ReferenceLabel("Internal figures, do not share", bold=True)],
        special_fields=[
            SpecialField("Total", order=0, columns=["quantity"]),
            SpecialField(
                "Average price",
                order=0,
                columns=["price", "price"],
                operation=Operation.CUSTOM,
                formula="SUM(?)/COUNT(?)",
            ),
        ],
        pivot=Pivot(
            condition_columns=["region"],
            value_columns=["quantity"],
            label="Quantity by region",
            sheet="by region",
            special_field=SpecialField("Total", columns=["quantity"]),
        ),
    )
    builder = XLSXExportBuilder(ExportConfig(row_freeze_pane=3))
    path = outdir / "sales_table.xlsx"
    path.write_bytes(builder.generate_complex_excel(table))
    print(f"Written: {path}")
    return path


def demo_side_by_side(sales: list[Sale], outdir: Path) -> None:
    """Two tables packed next to each other."""

    print("\n" + "=" * 50)
    print("2. Horizontal orientation")
    print("=" * 50)

    north = [s for s in sales if s.region is Region.NORTH]
    others = [s for s in sales if s.region is not Region.NORTH]
    builder = XLSXExportBuilder(ExportConfig(orientation="horizontal"))
    path = outdir / "sales_side_by_side.xlsx"
    path.write_bytes(builder.generate_excel(north, others))
    print(f"Written: {path}")


def demo_report(sales: list[Sale], outdir: Path) -> None:
    """Key-value block whose totals point to the sales table below it."""

    print("\n" + "=" * 50)
    print("3. Report")
    print("=" * 50)

    report = ReportExport(
        generalities=Summary(customer="ACME Corp.", period="Q1 2024"),
        generalities_special_fields=[
            SpecialField("Items sold", order=0, columns=["quantity"]),
        ],
        data=[ComplexExport(records=sales)],
    )
    path = outdir / "sales_report.xlsx"
    path.write_bytes(XLSXExportBuilder().generate_report_excel(report))
    print(f"Written: {path}")


def demo_import_and_feedback(table_file: Path, outdir: Path) -> None:
    """Read the exported table back and mark its rows."""

    print("\n" + "=" * 50)
    print("4. Import and feedback")
    print("=" * 50)

    columns = [
        ImportColumn("region", "region", required=True, column_order=0, start_row=3),
        ImportColumn("quantity", "quantity", required=True, column_order=1),
        ImportColumn("paid", "paid", column_order=2),
    ]
    imported = import_from_xlsx(table_file, ImportedSale, columns)
    for sale in imported:
        print(f"  row {sale.nr_row}: {sale.region.value:<6} {sale.quantity:>3} paid={sale.paid}")

    results = [
        ValidationResult(
            message="Unpaid order above 10 items",
            row_index=sale.nr_row,
            column_index=2,
            status=ValidationStatus.WARNING,
        )
        for sale in imported
        if not sale.paid and sale.quantity > 10
    ]
    path = outdir / "sales_table_checked.xlsx"
    path.write_bytes(annotate_xlsx(table_file, columns, results))
    print(f"Written: {path}")


def demo_csv(sales: list[Sale], outdir: Path) -> None:
    print("\n" + "=" * 50)
    print("5. CSV")
    print("=" * 50)

    path = outdir / "sales.csv"
    path.write_bytes(export_to_csv(sales))
    print(path.read_text(encoding="utf-8"))


def main():
    """Run all report demonstrations."""

    print("XLSXMAP SALES REPORT DEMO")
    print("=" * 60)

    outdir = Path("sales_demo")
    outdir.mkdir(exist_ok=True)
    sales = create_sample_data()

    try:
        table_file = demo_table_with_totals(sales, outdir)
        demo_side_by_side(sales, outdir)
        demo_report(sales, outdir)
        demo_import_and_feedback(table_file, outdir)
        demo_csv(sales, outdir)

        print("\n✅ All demonstrations completed successfully!")
        print(f"Demo files in: {outdir.absolute()}")

    except Exception as e:
        print(f"\n❌ Demo failed: {e}")

        traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
