from dataclasses import dataclass
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class AttendanceRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    student_name: str
    identifier: str # Normalized, dedup key
    slot_name: str
    capture_date: str
    capture_time: str


class SessionData(BaseModel):
    """Persisted form of the active session. Seen identifiers are derived from records."""
    model_config = ConfigDict(extra='ignore')

    slot_name: str
    records: List[AttendanceRecord] = Field(default_factory=list)
    last_saved: Optional[str] = None


class VerifierResponse(BaseModel):
    """Structured verdict as returned by the recognition model."""
    model_config = ConfigDict(extra='ignore')

    is_valid: bool
    is_institution_card: Optional[bool] = None
    student_name: Optional[str] = None
    identifier: Optional[str] = None
    rejection_reason: Optional[str] = None
    confidence: Optional[float] = None


# Verdicts (transient, never persisted)

@dataclass(frozen=True)
class Accepted:
    student_name: str
    identifier: str

@dataclass(frozen=True)
class Rejected:
    reason: str

@dataclass(frozen=True)
class Duplicate:
    identifier: str

@dataclass(frozen=True)
class CallFailed:
    cause: str

Verdict = Union[Accepted, Rejected, Duplicate, CallFailed]
