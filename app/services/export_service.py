"""
Report export — XLSX (openpyxl) and CSV.

Report rows are flattened before export: every DimensionValue column is
written as its display name, every metric label as its value. Drill-down
records are flattened the same way, with nested references (status,
executedBy, milestone …) reduced to their ``name``.
"""

import csv
import io
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

EXPORT_FORMATS = ("xlsx", "csv")


def _cell_value(value):
    if isinstance(value, dict):
        return value.get("name", value.get("id"))
    if isinstance(value, list):
        return ", ".join(str(_cell_value(v)) for v in value)
    return value


def flatten_rows(rows: list[dict], columns: list[tuple[str, str]] | None = None):
    """Return (headers, values) for a list of dict rows.

    ``columns`` is a list of (key, header) pairs; by default every key of
    the first row is used with the key itself as header.
    """
    if columns is None:
        columns = [(key, key) for key in (rows[0].keys() if rows else [])]
    headers = [header for _, header in columns]
    values = [[_cell_value(row.get(key)) for key, _ in columns] for row in rows]
    return headers, values


def report_columns(kind, dimensions: list[str], metrics: list[str]) -> list[tuple[str, str]]:
    """Export columns for a report: dimension labels first, then metric labels."""
    columns = [(dim, kind.dimensions.get(dim, dim)) for dim in dimensions]
    columns += [(kind.metrics[m], kind.metrics[m]) for m in metrics]
    return columns


def _apply_header_style(ws, row: int, col_count: int) -> None:
    """Apply dark-header styling to an Excel row (1-indexed)."""
    for col in range(1, col_count + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)


def _auto_width(ws) -> None:
    """Auto-size column widths based on content (capped at 60 chars)."""
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            if cell.value:
                max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[col_letter].width = max(max_len + 4, 12)


def export_xlsx(title: str, headers: list[str], values: list[list]) -> io.BytesIO:
    """
    Generate a styled Excel workbook with one data sheet.
    Returns a BytesIO buffer ready for Flask send_file.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = title[:31] or "Report"

    ws["A1"] = title
    ws["A1"].font = Font(size=14, bold=True)
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    header_row = 4
    for col, header in enumerate(headers, 1):
        ws.cell(row=header_row, column=col, value=header)
    _apply_header_style(ws, header_row, len(headers))

    for offset, row in enumerate(values, 1):
        for col, value in enumerate(row, 1):
            cell = ws.cell(row=header_row + offset, column=col, value=value)
            cell.border = THIN_BORDER

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    _auto_width(ws)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    logger.info("Exported %d rows to xlsx (%s)", len(values), title)
    return buf


def export_csv(headers: list[str], values: list[list]) -> io.BytesIO:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    writer.writerows(values)
    buf = io.BytesIO(output.getvalue().encode("utf-8-sig"))
    buf.seek(0)
    return buf
