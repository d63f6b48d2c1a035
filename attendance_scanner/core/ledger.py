from typing import Iterable, Iterator, Set
from attendance_scanner.core.models import AttendanceRecord
from attendance_scanner.core.utils import normalize_identifier


class DedupLedger:
    """
    Set of normalized identifiers scanned in the current session.
    Always rebuilt from the session records, never persisted on its own.
    """

    def __init__(self, identifiers: Iterable[str] = ()):
        self._seen: Set[str] = {normalize_identifier(i) for i in identifiers if i}

    @classmethod
    def from_records(cls, records: Iterable[AttendanceRecord]) -> "DedupLedger":
        return cls(r.identifier for r in records)

    def __contains__(self, identifier: str) -> bool:
        return normalize_identifier(identifier) in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def __iter__(self) -> Iterator[str]:
        return iter(self._seen)

    def add(self, identifier: str) -> bool:
        """Adds the identifier. Returns False if it was already present."""
        key = normalize_identifier(identifier)
        if not key:
            raise ValueError("Identifier cannot be empty")
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def clear(self):
        self._seen.clear()

    def snapshot(self) -> frozenset:
        return frozenset(self._seen)
