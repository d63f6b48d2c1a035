import os
import json
import logging
from datetime import datetime
from typing import List, Optional
from pydantic import ValidationError

from attendance_scanner.core import config_manager
from attendance_scanner.core.ledger import DedupLedger
from attendance_scanner.core.models import AttendanceRecord, SessionData
from attendance_scanner.core.utils import normalize_identifier

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Owns the single active attendance session and its on-disk copy.
    Only one session exists at a time; saving always overwrites the previous file.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path or config_manager.load_config()["session_file"]
        self.session: Optional[SessionData] = None
        self.ledger = DedupLedger()

    # --- Queries ---

    @property
    def has_session(self) -> bool:
        return self.session is not None

    @property
    def slot_name(self) -> Optional[str]:
        return self.session.slot_name if self.session else None

    @property
    def records(self) -> List[AttendanceRecord]:
        return list(self.session.records) if self.session else []

    @property
    def seen_identifiers(self) -> frozenset:
        return self.ledger.snapshot()

    def contains(self, identifier: str) -> bool:
        return identifier in self.ledger

    # --- Lifecycle ---

    def load(self) -> Optional[SessionData]:
        """Restores the persisted session, if any. Unreadable data counts as no session."""
        self.session = None
        self.ledger = DedupLedger()

        if not os.path.exists(self.path):
            return None

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            session = SessionData(**data)
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error(f"Failed to load session from {self.path}: {e}")
            return None

        if not session.slot_name.strip():
            logger.warning("Persisted session has no slot name, ignoring it")
            return None

        # Records are stored newest first, so the first copy of an identifier wins
        records = []
        for r in session.records:
            identifier = normalize_identifier(r.identifier)
            if not identifier or any(kept.identifier == identifier for kept in records):
                logger.warning(f"Dropping persisted record with unusable identifier '{r.identifier}'")
                continue
            if identifier != r.identifier:
                r = r.model_copy(update={'identifier': identifier})
            records.append(r)
        session.records = records

        self.session = session
        self.ledger = DedupLedger.from_records(records)
        logger.info(f"Restored session '{session.slot_name}' with {len(session.records)} records")
        return self.session

    def save(self):
        """Writes the active session to disk. Best effort: errors are logged, not raised."""
        if not self.session:
            return

        self.session.last_saved = datetime.now().isoformat()
        tmp_path = f"{self.path}.tmp"
        try:
            os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
            data = self.session.model_dump(mode='json')
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=4)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save session: {e}")

    def clear(self):
        """Removes the persisted session file."""
        try:
            if os.path.exists(self.path):
                os.remove(self.path)
        except OSError as e:
            logger.error(f"Failed to clear session file: {e}")

    # --- Mutations ---

    def start_session(self, slot_name: str) -> SessionData:
        slot_name = (slot_name or "").strip()
        if not slot_name:
            raise ValueError("Slot name cannot be empty")
        if self.session:
            raise ValueError(f"Session '{self.session.slot_name}' is already active")

        self.session = SessionData(slot_name=slot_name)
        self.ledger = DedupLedger()
        self.save()
        logger.info(f"Started session '{slot_name}'")
        return self.session

    def add_record(self, record: AttendanceRecord) -> bool:
        """
        Inserts a record at the front of the list together with its identifier.
        Returns False (and changes nothing) if the identifier was already scanned.
        """
        if not self.session:
            raise RuntimeError("No active session")
        if record.identifier != normalize_identifier(record.identifier):
            raise ValueError(f"Identifier '{record.identifier}' is not normalized")
        if record.identifier in self.ledger:
            return False

        self.ledger.add(record.identifier)
        self.session.records.insert(0, record)
        self.save()
        return True

    def reset(self):
        """Ends the session: clears memory and the file."""
        if self.session:
            logger.info(f"Resetting session '{self.session.slot_name}' ({len(self.session.records)} records)")
        self.session = None
        self.ledger.clear()
        self.clear()


session_store = SessionStore()
