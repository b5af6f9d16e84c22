from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from posledger.repositories.sqlite_repo import SqliteStore


@dataclass(frozen=True)
class SalesSummary:
    transactions: int
    revenue: float
    tax_collected: float
    units_sold: int


class ReportingService:
    def __init__(self, store: SqliteStore):
        self.store = store

    def sales_summary(self) -> SalesSummary:
        txs = self.store.list_transactions()
        return SalesSummary(
            transactions=len(txs),
            revenue=sum(float(t.total) for t in txs),
            tax_collected=sum(float(t.tax_amount) for t in txs),
            units_sold=sum(int(it.quantity) for t in txs for it in t.items),
        )

    def export_report_excel(self, path: Path | str) -> Path:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, end_col: int):
            if ws.max_row < 2:
                return
            ref = f"A1:{get_column_letter(end_col)}{ws.max_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        summary = self.sales_summary()
        settings = self.store.get_settings()

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = settings.store_name if settings else "Summary"
        ws["A1"].font = Font(bold=True, size=14)

        rows = [
            ("Transactions", summary.transactions, False),
            ("Revenue", summary.revenue, True),
            ("Tax collected", summary.tax_collected, True),
            ("Units sold", summary.units_sold, False),
        ]
        for i, (label, val, is_money) in enumerate(rows):
            r = 3 + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if is_money:
                money(ws[f"B{r}"])
        set_widths(ws, {"A": 20, "B": 18})

        # -------- 2) Transactions --------
        ws2 = wb.create_sheet("Transactions")
        ws2.append(["Transaction ID", "Date", "Payment", "SKU", "Product", "Qty", "Unit Price", "Line Total", "Transaction Total"])
        bold_row(ws2, 1)
        for t in self.store.list_transactions():
            for it in t.items:
                ws2.append([
                    t.id, t.date, t.payment_method.value,
                    it.product.sku, it.product.name,
                    int(it.quantity), float(it.product.price), float(it.line_total), float(t.total),
                ])
                r = ws2.max_row
                for col in ("G", "H", "I"):
                    money(ws2[f"{col}{r}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 26, "B": 28, "C": 10, "D": 14, "E": 30, "F": 6, "G": 14, "H": 14, "I": 18})
        add_table(ws2, "Transactions", 9)

        # -------- 3) Stock ledger --------
        ws3 = wb.create_sheet("Stock Ledger")
        ws3.append(["Mutation ID", "Date", "Product", "SKU", "Type", "Amount", "Note"])
        bold_row(ws3, 1)
        for m in self.store.list_mutations():
            ws3.append([m.id, m.date, m.product_name, m.sku, m.type.value, int(m.amount), m.note or "-"])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 26, "B": 28, "C": 30, "D": 14, "E": 10, "F": 10, "G": 40})
        add_table(ws3, "StockLedger", 7)

        target = Path(path)
        wb.save(target)
        return target
