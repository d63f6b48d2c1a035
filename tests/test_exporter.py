import io
import csv
import unittest
from datetime import date

from attendance_scanner.core.models import AttendanceRecord
from attendance_scanner.services.exporter import build_csv, export_filename


class TestExporter(unittest.TestCase):
    def setUp(self):
        # Newest first, as kept by the session store
        self.records = [
            AttendanceRecord(student_name='B. "Bala" Raj', identifier="VTU2", slot_name="Lab 1",
                             capture_date="2024-05-06", capture_time="09:45 AM"),
            AttendanceRecord(student_name="A. Kumar, Jr", identifier="VTU1023", slot_name="Lab 1",
                             capture_date="2024-05-06", capture_time="09:41 AM"),
        ]

    def test_columns_order_and_quoting(self):
        lines = build_csv(self.records).split('\n')
        self.assertEqual(lines[0], '"Name","Identifier","Slot","Date","Time"')
        self.assertEqual(lines[1], '"B. ""Bala"" Raj","VTU2","Lab 1","2024-05-06","09:45 AM"')
        self.assertEqual(lines[2], '"A. Kumar, Jr","VTU1023","Lab 1","2024-05-06","09:41 AM"')
        self.assertEqual(lines[3], '')

    def test_export_is_idempotent(self):
        self.assertEqual(build_csv(self.records).encode('utf-8'), build_csv(self.records).encode('utf-8'))

    def test_empty_records_only_header(self):
        self.assertEqual(build_csv([]), '"Name","Identifier","Slot","Date","Time"\n')

    def test_formula_cells_are_escaped(self):
        records = [
            AttendanceRecord(student_name="=HYPERLINK(\"http://x\")", identifier="VTU9", slot_name="@Lab",
                             capture_date="2024-05-06", capture_time="09:45 AM"),
            AttendanceRecord(student_name="Anne-Marie", identifier="VTU8", slot_name="Lab",
                             capture_date="2024-05-06", capture_time="09:44 AM"),
        ]
        rows = list(csv.reader(io.StringIO(build_csv(records))))
        self.assertEqual(rows[1][0], "'=HYPERLINK(\"http://x\")")
        self.assertEqual(rows[1][2], "'@Lab")
        # Only a leading formula character matters
        self.assertEqual(rows[2][0], "Anne-Marie")

    def test_filename(self):
        self.assertEqual(export_filename("Morning Session", date(2024, 5, 6)),
                         "attendance_Morning_Session_2024-05-06.csv")
        self.assertEqual(export_filename("Lab  A\tB", date(2024, 12, 31)),
                         "attendance_Lab_A_B_2024-12-31.csv")


if __name__ == '__main__':
    unittest.main()
