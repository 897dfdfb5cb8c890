from __future__ import annotations

from datetime import date, datetime, timezone, tzinfo
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy.orm import Session

from app.services import ledger
from app.services.status_engine import EXCEPTION_CATEGORIES, StatusCategory

SNAPSHOT_COLUMNS = [
    ("date", "Date"),
    ("employee_no", "Employee No"),
    ("full_name", "Name"),
    ("department_id", "Department"),
    ("status", "Status"),
    ("category", "Category"),
    ("record_time", "Time"),
    ("recorder", "Recorder"),
    ("reason", "Reason"),
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="EAF4F9")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
WARNING_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)

_EXCEPTION_VALUES = {category.value for category in EXCEPTION_CATEGORIES}


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _style_rows(ws: Worksheet, *, header_row: int, data_end_row: int, category_col: int) -> None:
    ws.freeze_panes = f"A{header_row + 1}"
    if data_end_row <= header_row:
        return
    ws.auto_filter.ref = f"A{header_row}:{get_column_letter(ws.max_column)}{data_end_row}"

    for row_idx in range(header_row + 1, data_end_row + 1):
        category = ws.cell(row=row_idx, column=category_col).value
        if category in _EXCEPTION_VALUES:
            row_fill = ALERT_FILL
        elif category == StatusCategory.UNATTENDED.value:
            row_fill = WARNING_FILL
        elif row_idx % 2 == 0:
            row_fill = ZEBRA_FILL
        else:
            row_fill = None

        for col_idx in range(1, ws.max_column + 1):
            cell = ws.cell(row=row_idx, column=col_idx)
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="left", vertical="center")
            if row_fill is not None:
                cell.fill = row_fill


def build_snapshot_xlsx_bytes(db: Session, day: date, *, tz: tzinfo | None = None) -> bytes:
    """Workbook with one sheet listing the day's latest status per employee."""
    rows = ledger.export_rows(db, day, tz=tz)

    wb = Workbook()
    ws = wb.active
    ws.title = f"Attendance {day.isoformat()}"
    ws.append(["Date", day.isoformat()])
    ws.append(["Generated (UTC)", datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")])
    ws.append(["Employees", len(rows)])
    for row_idx in range(1, 4):
        label_cell = ws.cell(row=row_idx, column=1)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
    ws.append([])

    ws.append([title for _, title in SNAPSHOT_COLUMNS])
    header_row = ws.max_row
    _style_header(ws, header_row)
    for row in rows:
        ws.append([row[key] if row[key] is not None else "" for key, _ in SNAPSHOT_COLUMNS])

    category_col = 1 + [key for key, _ in SNAPSHOT_COLUMNS].index("category")
    _style_rows(ws, header_row=header_row, data_end_row=ws.max_row, category_col=category_col)
    _auto_width(ws)

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
