import os
import json
import shutil
import tempfile
import unittest

from attendance_scanner.core.models import AttendanceRecord
from attendance_scanner.services.session_store import SessionStore


def make_record(identifier: str, name: str = "Student", slot: str = "Morning Session") -> AttendanceRecord:
    return AttendanceRecord(
        student_name=name,
        identifier=identifier,
        slot_name=slot,
        capture_date="2024-05-06",
        capture_time="09:41 AM",
    )


class TestSessionStore(unittest.TestCase):
    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.test_dir, "session", "attendance_session.json")
        self.store = SessionStore(path=self.path)

    def tearDown(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_start_session_persists(self):
        self.store.start_session("  Morning Session ")
        self.assertEqual(self.store.slot_name, "Morning Session")
        self.assertTrue(os.path.exists(self.path))

        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        self.assertEqual(data['slot_name'], "Morning Session")
        self.assertEqual(data['records'], [])
        self.assertIsNotNone(data['last_saved'])
        # Seen identifiers are derived, never written
        self.assertNotIn('seen_identifiers', data)

    def test_start_session_requires_slot(self):
        with self.assertRaises(ValueError):
            self.store.start_session("   ")
        self.assertFalse(self.store.has_session)

    def test_start_session_twice(self):
        self.store.start_session("Lab")
        with self.assertRaises(ValueError):
            self.store.start_session("Tutorial")
        self.assertEqual(self.store.slot_name, "Lab")

    def test_add_record_newest_first(self):
        self.store.start_session("Lab")
        self.assertTrue(self.store.add_record(make_record("VTU1")))
        self.assertTrue(self.store.add_record(make_record("VTU2")))
        self.assertEqual([r.identifier for r in self.store.records], ["VTU2", "VTU1"])
        self.assertEqual(self.store.seen_identifiers, frozenset({"VTU1", "VTU2"}))

    def test_add_duplicate_changes_nothing(self):
        self.store.start_session("Lab")
        self.store.add_record(make_record("VTU1", name="First"))
        self.assertFalse(self.store.add_record(make_record("VTU1", name="Second")))
        self.assertEqual(len(self.store.records), 1)
        self.assertEqual(self.store.records[0].student_name, "First")

    def test_add_requires_normalized_identifier(self):
        self.store.start_session("Lab")
        with self.assertRaises(ValueError):
            self.store.add_record(make_record("vtu 1"))
        self.assertEqual(self.store.records, [])
        self.assertEqual(len(self.store.seen_identifiers), 0)

    def test_add_without_session(self):
        with self.assertRaises(RuntimeError):
            self.store.add_record(make_record("VTU1"))

    def test_reload_round_trip(self):
        self.store.start_session("Evening Session")
        identifiers = [f"VTU{i}" for i in range(5)]
        for ident in identifiers:
            self.store.add_record(make_record(ident, name=f"Name {ident}", slot="Evening Session"))
        expected = self.store.records

        reloaded = SessionStore(path=self.path)
        session = reloaded.load()

        self.assertIsNotNone(session)
        self.assertEqual(reloaded.slot_name, "Evening Session")
        self.assertEqual(reloaded.records, expected)
        self.assertEqual(reloaded.seen_identifiers, frozenset(identifiers))
        self.assertTrue(reloaded.contains("vtu 3"))

    def test_load_missing_file(self):
        self.assertIsNone(self.store.load())
        self.assertFalse(self.store.has_session)

    def test_load_corrupt_file(self):
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            f.write("{not json")
        self.assertIsNone(self.store.load())
        self.assertFalse(self.store.has_session)

    def test_load_schema_mismatch(self):
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump({"records": [{"student_name": "x"}]}, f)
        self.assertIsNone(self.store.load())

    def test_load_ignores_persisted_seen_set(self):
        # A stale identifier set must not leak into the ledger
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump({
                "slot_name": "Lab",
                "records": [make_record("VTU1").model_dump()],
                "seen_identifiers": ["VTU1", "VTU999"],
            }, f)
        self.store.load()
        self.assertEqual(self.store.seen_identifiers, frozenset({"VTU1"}))

    def test_load_normalizes_stored_identifiers(self):
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump({
                "slot_name": "Lab",
                "records": [
                    make_record("vtu 1", name="Newest").model_dump(),
                    make_record("VTU2").model_dump(),
                    make_record("VTU1", name="Older copy").model_dump(),
                    make_record("   ").model_dump(),
                ],
            }, f)
        self.store.load()

        self.assertEqual([r.identifier for r in self.store.records], ["VTU1", "VTU2"])
        self.assertEqual(self.store.records[0].student_name, "Newest")
        self.assertEqual(self.store.seen_identifiers, frozenset(r.identifier for r in self.store.records))

    def test_reset_clears_memory_and_file(self):
        self.store.start_session("Lab")
        self.store.add_record(make_record("VTU1"))
        self.store.reset()

        self.assertFalse(self.store.has_session)
        self.assertEqual(self.store.records, [])
        self.assertEqual(len(self.store.seen_identifiers), 0)
        self.assertFalse(os.path.exists(self.path))
        self.assertIsNone(SessionStore(path=self.path).load())

    def test_save_failure_is_not_fatal(self):
        # Parent "directory" is a regular file, so every write fails
        blocker = os.path.join(self.test_dir, "blocker")
        with open(blocker, 'w') as f:
            f.write("x")
        store = SessionStore(path=os.path.join(blocker, "session.json"))

        with self.assertLogs('attendance_scanner.services.session_store', level='ERROR'):
            store.start_session("Lab")
            self.assertTrue(store.add_record(make_record("VTU1")))

        # In-memory state survives the failed writes
        self.assertEqual(len(store.records), 1)


if __name__ == '__main__':
    unittest.main()
