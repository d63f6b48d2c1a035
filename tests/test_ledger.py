import unittest
from attendance_scanner.core.ledger import DedupLedger
from attendance_scanner.core.models import AttendanceRecord
from attendance_scanner.core.utils import normalize_identifier, safe_slot_name, capture_stamp
from datetime import datetime


class TestNormalizeIdentifier(unittest.TestCase):
    def test_uppercase_and_strip_spaces(self):
        self.assertEqual(normalize_identifier("vtu 1023"), "VTU1023")

    def test_tabs_and_newlines(self):
        self.assertEqual(normalize_identifier(" vtu\t10 23\n"), "VTU1023")

    def test_empty(self):
        self.assertEqual(normalize_identifier(""), "")
        self.assertEqual(normalize_identifier("   "), "")
        self.assertEqual(normalize_identifier(None), "")


class TestUtils(unittest.TestCase):
    def test_safe_slot_name(self):
        self.assertEqual(safe_slot_name("Morning  Session"), "Morning_Session")
        self.assertEqual(safe_slot_name(" Lab 3 "), "Lab_3")

    def test_capture_stamp(self):
        d, t = capture_stamp(datetime(2024, 5, 6, 14, 5))
        self.assertEqual(d, "2024-05-06")
        self.assertEqual(t, "02:05 PM")


class TestDedupLedger(unittest.TestCase):
    def test_membership_is_normalized(self):
        ledger = DedupLedger()
        self.assertTrue(ledger.add("vtu 1023"))
        self.assertIn("VTU1023", ledger)
        self.assertIn(" Vtu 1023 ", ledger)
        self.assertEqual(len(ledger), 1)

    def test_add_twice(self):
        ledger = DedupLedger()
        self.assertTrue(ledger.add("VTU1"))
        self.assertFalse(ledger.add("vtu1"))
        self.assertEqual(ledger.snapshot(), frozenset({"VTU1"}))

    def test_empty_identifier_rejected(self):
        with self.assertRaises(ValueError):
            DedupLedger().add("  ")

    def test_from_records(self):
        records = [
            AttendanceRecord(student_name="A", identifier="VTU1", slot_name="S", capture_date="d", capture_time="t"),
            AttendanceRecord(student_name="B", identifier="VTU2", slot_name="S", capture_date="d", capture_time="t"),
        ]
        ledger = DedupLedger.from_records(records)
        self.assertEqual(set(ledger), {"VTU1", "VTU2"})

    def test_clear(self):
        ledger = DedupLedger(["A", "B"])
        ledger.clear()
        self.assertEqual(len(ledger), 0)


if __name__ == '__main__':
    unittest.main()
