import io
import csv
from datetime import date
from typing import Iterable, Optional

from attendance_scanner.core.models import AttendanceRecord
from attendance_scanner.core.utils import iso_date, safe_slot_name

CSV_HEADERS = ["Name", "Identifier", "Slot", "Date", "Time"]

# Leading characters a spreadsheet would treat as the start of a formula
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def escape_cell(value: str) -> str:
    if value and value.startswith(FORMULA_PREFIXES):
        return f"'{value}"
    return value


def build_csv(records: Iterable[AttendanceRecord]) -> str:
    """Serializes records in their current order (newest first). Every field is quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(CSV_HEADERS)
    for r in records:
        row = [r.student_name, r.identifier, r.slot_name, r.capture_date, r.capture_time]
        writer.writerow([escape_cell(v) for v in row])
    return buffer.getvalue()


def export_filename(slot_name: str, on_date: Optional[date] = None) -> str:
    on_date = on_date or date.today()
    return f"attendance_{safe_slot_name(slot_name)}_{iso_date(on_date)}.csv"
