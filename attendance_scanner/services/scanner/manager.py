import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from attendance_scanner.core import config_manager
from attendance_scanner.core.models import (
    Accepted, AttendanceRecord, CallFailed, Duplicate, Rejected, Verdict
)
from attendance_scanner.core.utils import capture_stamp, normalize_identifier
from attendance_scanner.services.connectivity import ConnectivityMonitor, connectivity_monitor
from attendance_scanner.services.recognition import RecognitionClient, RecognitionError, recognition_client
from attendance_scanner.services.session_store import SessionStore, session_store

logger = logging.getLogger(__name__)

CaptureSource = Callable[[], Union[Optional[bytes], Awaitable[Optional[bytes]]]]

READY_MESSAGE = "Position ID card in frame"
NEXT_CARD_MESSAGE = "Position next card"
SCANNING_MESSAGE = "Scanning ID card..."
DUPLICATE_MESSAGE = "ID Already Scanned!"
FAILED_MESSAGE = "Scan failed. Try again."
INVALID_FALLBACK = "Invalid ID Card"


class ScanState(str, Enum):
    READY = "ready"
    CAPTURING = "capturing"
    CLASSIFYING = "classifying"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    CALL_FAILED = "call_failed"


OUTCOME_STATES = (ScanState.ACCEPTED, ScanState.REJECTED, ScanState.DUPLICATE, ScanState.CALL_FAILED)


@dataclass
class ScanEvent:
    state: ScanState
    message: str
    record: Optional[AttendanceRecord] = None


class ScannerManager:
    """
    Drives the capture -> verify -> dedup -> persist loop.

    tick() is called on a fixed interval. It only starts an attempt when the loop
    is running, the state is READY, the device is online and no call is outstanding.
    The state flips to CAPTURING before the first await, so overlapping ticks are no-ops.
    Outcome states return to READY through a scheduled callback, not through tick().
    """

    def __init__(self,
                 store: Optional[SessionStore] = None,
                 client: Optional[RecognitionClient] = None,
                 monitor: Optional[ConnectivityMonitor] = None,
                 config: Optional[Dict[str, Any]] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store or session_store
        self.client = client or recognition_client
        self.monitor = monitor or connectivity_monitor
        self.clock = clock

        config = config or config_manager.load_config()
        self.delays = {
            ScanState.ACCEPTED: float(config["accepted_delay"]),
            ScanState.REJECTED: float(config["rejected_delay"]),
            ScanState.DUPLICATE: float(config["duplicate_delay"]),
            ScanState.CALL_FAILED: float(config["failed_delay"]),
        }
        self.request_timeout = float(config["request_timeout"])

        self.running = False
        self.state = ScanState.READY
        self.status_message = READY_MESSAGE
        self.in_flight = False

        self._capture: Optional[CaptureSource] = None
        self._generation = 0
        self._ready_handle: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Callable[[ScanEvent], None]] = []

    # --- Lifecycle ---

    def start(self, capture_source: CaptureSource):
        if not self.store.has_session:
            raise RuntimeError("Cannot start scanning without an active session")
        self._capture = capture_source
        if self.running:
            return
        self.running = True
        logger.info(f"Scanner started for slot '{self.store.slot_name}'")

    def stop(self):
        """Stops the loop. An outstanding call is abandoned and its result discarded."""
        if self.in_flight:
            logger.info("Abandoning in-flight scan attempt")
        self.running = False
        self._generation += 1
        self._cancel_ready_timer()
        self._capture = None
        self._set_state(ScanState.READY, READY_MESSAGE)
        logger.info("Scanner stopped")

    def release(self, capture_source: CaptureSource) -> bool:
        """Stops the loop only when it is driven by the given capture source."""
        if self._capture is None or self._capture != capture_source:
            return False
        self.stop()
        return True

    def register_listener(self, callback: Callable[[ScanEvent], None]):
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_listener(self, callback: Callable[[ScanEvent], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def get_status(self) -> ScanState:
        return self.state

    # --- Loop ---

    def can_start_attempt(self) -> bool:
        return (self.running
                and self.state == ScanState.READY
                and not self.in_flight
                and self.monitor.is_online
                and self.store.has_session
                and self._capture is not None)

    async def tick(self) -> Optional[Verdict]:
        """Timer entry point. Returns the outcome of the attempt, or None when nothing ran."""
        if not self.can_start_attempt():
            return None

        generation = self._generation
        ready_message = self.status_message
        self.in_flight = True
        self._set_state(ScanState.CAPTURING, SCANNING_MESSAGE)
        try:
            verdict = await self._attempt(generation)
        finally:
            # Cleared only when the call really resolved, even for abandoned attempts
            self.in_flight = False

        if generation != self._generation:
            logger.info(f"Discarding result of abandoned attempt: {verdict}")
            return None

        if verdict is None:
            self._set_state(ScanState.READY, ready_message)
            return None

        outcome = self.classify(verdict)
        return self._apply(outcome)

    async def _attempt(self, generation: int) -> Optional[Verdict]:
        try:
            frame = self._capture()
            if inspect.isawaitable(frame):
                frame = await frame
        except Exception as e:
            logger.error(f"Frame capture failed: {e}")
            return CallFailed(cause=f"Capture failed: {e}")

        if not frame:
            logger.debug("No frame available yet")
            return None
        if generation != self._generation:
            return None

        self._set_state(ScanState.CLASSIFYING, SCANNING_MESSAGE)
        try:
            return await asyncio.wait_for(self.client.verify(frame), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Verification timed out after {self.request_timeout}s")
            return CallFailed(cause="Timed out")
        except RecognitionError as e:
            logger.error(f"Verification call failed: {e}")
            return CallFailed(cause=str(e))
        except Exception as e:
            logger.error(f"Unexpected error during verification: {e}", exc_info=True)
            return CallFailed(cause=str(e) or type(e).__name__)

    def classify(self, verdict: Verdict) -> Verdict:
        """Turns the verifier's answer into a final outcome against the ledger."""
        if not isinstance(verdict, Accepted):
            return verdict

        identifier = normalize_identifier(verdict.identifier)
        if not identifier or not verdict.student_name:
            return CallFailed(cause="Verdict missing student name or identifier")
        if self.store.contains(identifier):
            return Duplicate(identifier=identifier)
        return Accepted(student_name=verdict.student_name, identifier=identifier)

    def _apply(self, outcome: Verdict) -> Verdict:
        if isinstance(outcome, Accepted):
            capture_date, capture_time = capture_stamp(self.clock())
            record = AttendanceRecord(
                student_name=outcome.student_name,
                identifier=outcome.identifier,
                slot_name=self.store.slot_name,
                capture_date=capture_date,
                capture_time=capture_time,
            )
            if self.store.add_record(record):
                logger.info(f"Recorded attendance for {record.identifier}")
                self._set_state(ScanState.ACCEPTED, f"✓ {record.student_name}", record=record)
                self._schedule_ready(ScanState.ACCEPTED, NEXT_CARD_MESSAGE)
                return outcome
            outcome = Duplicate(identifier=outcome.identifier)

        if isinstance(outcome, Duplicate):
            logger.info(f"Duplicate scan for {outcome.identifier}")
            self._set_state(ScanState.DUPLICATE, DUPLICATE_MESSAGE)
            self._schedule_ready(ScanState.DUPLICATE, READY_MESSAGE)
        elif isinstance(outcome, Rejected):
            logger.info(f"Card rejected: {outcome.reason}")
            self._set_state(ScanState.REJECTED, outcome.reason or INVALID_FALLBACK)
            self._schedule_ready(ScanState.REJECTED, READY_MESSAGE)
        else:
            self._set_state(ScanState.CALL_FAILED, FAILED_MESSAGE)
            self._schedule_ready(ScanState.CALL_FAILED, READY_MESSAGE)
        return outcome

    # --- State plumbing ---

    def _set_state(self, state: ScanState, message: str, record: Optional[AttendanceRecord] = None):
        if state != self.state:
            logger.debug(f"Scan state {self.state.value} -> {state.value}")
        self.state = state
        self.status_message = message
        event = ScanEvent(state=state, message=message, record=record)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Scanner listener failed: {e}")

    def _schedule_ready(self, outcome: ScanState, message: str):
        self._cancel_ready_timer()
        loop = asyncio.get_running_loop()
        self._ready_handle = loop.call_later(self.delays[outcome], self._return_to_ready, self._generation, message)

    def _return_to_ready(self, generation: int, message: str):
        self._ready_handle = None
        if generation != self._generation or self.state not in OUTCOME_STATES:
            return
        self._set_state(ScanState.READY, message)

    def _cancel_ready_timer(self):
        if self._ready_handle:
            self._ready_handle.cancel()
            self._ready_handle = None


scanner_manager = ScannerManager()
