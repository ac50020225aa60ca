"""
export.py – Plaintext exports of the decrypted record collection.

Every function here is a pure transform: it receives a read-only snapshot
of CredentialRecord objects (RecordStore.records) and returns text or
bytes.  Nothing is written to disk and no key material is involved; the
CLI decides where the output goes.

Formats
-------
  CSV   – header App/Website,Username,Email/Phone,Password,Created.
  HTML  – a printable document with one table row per record.
  Text  – a plain listing, one block per record.
  XLSX  – an openpyxl workbook with a single "Passwords" sheet.
"""

import csv
import html
import io
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional

from openpyxl import Workbook
from openpyxl.styles import Font

logger = logging.getLogger("PasswordSaver")

HEADERS = ["App/Website", "Username", "Email/Phone", "Password", "Created"]

DEFAULT_COLUMN_WIDTHS = {"A": 20, "B": 20, "C": 25, "D": 25, "E": 20}


def format_created(created_at: str) -> str:
    """
    Render an ISO-8601 timestamp as 'YYYY-MM-DD HH:MM'.

    Values that are not ISO timestamps are returned unchanged.
    """
    try:
        stamp = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    except ValueError:
        return created_at
    return stamp.strftime("%Y-%m-%d %H:%M")


def _rows(records: Iterable) -> list:
    return [
        [r.app_name, r.username, r.email_or_phone, r.password, format_created(r.created_at)]
        for r in records
    ]


def export_csv(records: Iterable) -> str:
    """Return the records as CSV text (fields quoted where needed)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(HEADERS)
    writer.writerows(_rows(records))
    return buffer.getvalue()


def export_html(records: Iterable, exported_at: Optional[datetime] = None) -> str:
    """Return a printable HTML document listing the records."""
    exported_at = exported_at or datetime.now()
    head = "".join(f"<th>{html.escape(h)}</th>" for h in HEADERS)
    body = "\n".join(
        "<tr>" + "".join(f"<td>{html.escape(cell)}</td>" for cell in row) + "</tr>"
        for row in _rows(records)
    )
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n<meta charset=\"utf-8\">\n"
        "<title>Passwords Export</title>\n"
        "<style>\n"
        "body { font-family: Arial, sans-serif; margin: 30px; }\n"
        "table { width: 100%; border-collapse: collapse; margin-top: 20px; }\n"
        "th, td { padding: 12px; text-align: left; border-bottom: 1px solid #ddd; }\n"
        "th { background-color: #EEF2FF; }\n"
        "</style>\n</head>\n<body>\n"
        "<h1>PasswordSaver - Exported Passwords</h1>\n"
        f"<p>Exported on {exported_at.strftime('%Y-%m-%d %H:%M')}</p>\n"
        f"<table>\n<thead><tr>{head}</tr></thead>\n<tbody>\n{body}\n</tbody>\n</table>\n"
        "</body>\n</html>\n"
    )


def export_text(records: Iterable, exported_at: Optional[datetime] = None) -> str:
    """Return a plain-text listing of the records."""
    exported_at = exported_at or datetime.now()
    blocks = [f"Password Export - {exported_at.strftime('%Y-%m-%d %H:%M')}\n"]
    for row in _rows(records):
        blocks.append(
            "".join(f"{label}: {value}\n" for label, value in zip(HEADERS, row))
        )
    return "\n".join(blocks)


def export_xlsx(records: Iterable, column_widths: Optional[Dict[str, int]] = None) -> bytes:
    """
    Build an Excel workbook and return its bytes.

    Column widths come from *column_widths* (config "excel_column_widths");
    unknown column letters are ignored.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = "Passwords"
    ws.append(HEADERS)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in _rows(records):
        ws.append(row)

    widths = column_widths or DEFAULT_COLUMN_WIDTHS
    for col, width in widths.items():
        if col in DEFAULT_COLUMN_WIDTHS:
            ws.column_dimensions[col].width = int(width)

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.info("Built Excel export")
    return buffer.getvalue()


EXPORTERS = {
    "csv": export_csv,
    "html": export_html,
    "text": export_text,
}
