import csv
from io import BytesIO, StringIO
from typing import Iterable

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from cardalerts.models.transaction import LedgerTransaction
from cardalerts.schemas.transaction import LedgerTransactionResponse


LEDGER_COLUMNS = [
    ("Transaction ID", "id"),
    ("Date", "date"),
    ("Merchant", "merchant"),
    ("Description", "description"),
    ("Amount", "amount"),
    ("Currency", "currency"),
    ("Payment Type", "payment_type"),
    ("Expense Mode", "expense_mode"),
    ("Category", "category_id"),
    ("Subcategory", "subcategory_id"),
    ("Source", "source"),
    ("Tags", "tags"),
    ("Email Subject", "raw_description"),
    ("Hash", "hash"),
    ("Created At", "created_at"),
]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def normalize_ledger_row(tx: LedgerTransaction) -> dict:
    """Flatten a ledger row into plain cell values keyed by column attribute."""
    row = LedgerTransactionResponse.model_validate(tx).model_dump(mode="json")
    row["tags"] = ", ".join(row.get("tags") or [])
    row["amount"] = tx.amount
    return row


def export_csv(rows: Iterable[dict], columns=LEDGER_COLUMNS) -> StringIO:
    buffer = StringIO()
    writer = csv.writer(buffer)

    writer.writerow([col[0] for col in columns])
    for row in rows:
        writer.writerow([row.get(col[1]) for col in columns])

    buffer.seek(0)
    return buffer


def export_xlsx(rows: Iterable[dict], columns=LEDGER_COLUMNS, sheet_name: str = "Ledger") -> BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name

    ws.append([col[0] for col in columns])
    for row in rows:
        ws.append([row.get(col[1]) for col in columns])

    ws.freeze_panes = "A2"
    for idx, (header, _) in enumerate(columns, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = max(12, len(header) + 2)

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output
