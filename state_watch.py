"""
state_watch.py

Firestore listener for the desired door state.

The watched document holds a single string field ("open" or "closed"). Every
snapshot that carries a value is reported to the change callbacks, including
repeats of the value already seen, so each delivery re-issues the matching
device command.
"""
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from config import DEFAULT_DOOR_STATE, DOOR_STATE_FIELD, WATCH_HEALTH_INTERVAL

DOOR_OPEN = "open"
DOOR_CLOSED = "closed"


class SubscriptionError(Exception):
    """The Firestore listener, or the default-document write, failed."""


@dataclass(frozen=True)
class DoorStateChanged:
    """A snapshot delivered a populated door state."""

    value: str
    read_time: Optional[datetime] = None


class StateWatch:
    """Watches one Firestore document and reports its door state."""

    def __init__(self, doc_ref, field: str = DOOR_STATE_FIELD,
                 default_state: str = DEFAULT_DOOR_STATE,
                 health_interval: float = WATCH_HEALTH_INTERVAL):
        """
        Args:
            doc_ref: The Firestore DocumentReference to watch.
            field (str): Name of the field holding the door state.
            default_state (str): Value written when the document does not exist.
            health_interval (float): Seconds between listener liveness checks.
        """
        self._doc_ref = doc_ref
        self._field = field
        self._default_state = default_state
        self._health_interval = health_interval
        self._watch = None
        self._watch_lock = threading.Lock()  # Guards _watch
        self._health_stop = threading.Event()
        self._change_callbacks: List[Callable[[DoorStateChanged], None]] = []
        self._error_callbacks: List[Callable[[SubscriptionError], None]] = []

    def on_change(self, callback: Callable[[DoorStateChanged], None]) -> None:
        self._change_callbacks.append(callback)

    def on_error(self, callback: Callable[[SubscriptionError], None]) -> None:
        self._error_callbacks.append(callback)

    def start(self) -> bool:
        """
        Attach the snapshot listener.

        Returns:
            bool: True if the listener is attached, False if setup failed (the
            failure is reported to the error callbacks, no retry is made).
        """
        with self._watch_lock:
            if self._watch is not None:
                return True
            try:
                self._watch = self._doc_ref.on_snapshot(self._on_snapshot)
            except Exception as e:
                self._report(SubscriptionError(f"Could not watch {self._doc_ref.path}: {e}"))
                return False
            self._health_stop = threading.Event()
            threading.Thread(
                target=self._watch_health, args=(self._watch, self._health_stop),
                name="firestore-health", daemon=True,
            ).start()
        print(f"👀  Watching Firestore document {self._doc_ref.path}")
        return True

    def stop(self) -> None:
        with self._watch_lock:
            if self._watch is None:
                return
            self._health_stop.set()
            try:
                self._watch.unsubscribe()
            except Exception as e:
                print(f"[FIRESTORE-ERROR] Unsubscribe failed: {e}")
            self._watch = None

    def _watch_health(self, watch, stopped: threading.Event) -> None:
        """
        Report once if the Firestore listener stops streaming.

        The library logs a broken stream itself but never calls back into our
        code, so the watch is polled. No resubscribe is attempted.
        """
        while not stopped.wait(self._health_interval):
            with self._watch_lock:
                if self._watch is not watch:
                    return  # Stopped or replaced
                active = getattr(watch, "is_active", True)
            if not active:
                self._report(SubscriptionError(f"Firestore listener for {self._doc_ref.path} stopped"))
                return

    def _on_snapshot(self, doc_snapshots, changes, read_time) -> None:
        """
        Firestore snapshot callback for the watched document.

        For a document watch, doc_snapshots holds the document's snapshot, or
        nothing at all when the document does not exist.
        """
        try:
            snapshot = doc_snapshots[0] if doc_snapshots else None
            self.handle_snapshot(snapshot, read_time)
        except Exception as e:
            # An exception escaping here would close the Firestore watch
            self._report(SubscriptionError(f"Snapshot handling failed: {e}"))

    def handle_snapshot(self, snapshot, read_time: Optional[datetime] = None) -> Optional[DoorStateChanged]:
        """
        Process one delivered snapshot.

        - Missing document: write the default state and emit nothing; the write
          triggers its own snapshot.
        - Document without a populated field: ignored.
        - Otherwise: emit DoorStateChanged with the field's value.

        Returns:
            The emitted event, or None when nothing was emitted.
        """
        if snapshot is None or not snapshot.exists:
            self._write_default()
            return None

        data = snapshot.to_dict() or {}
        value = data.get(self._field)
        if not value:
            return None

        print(f"[FIRESTORE] doorState changed to: {value}")
        event = DoorStateChanged(value=value, read_time=read_time)
        for callback in self._change_callbacks:
            try:
                callback(event)
            except Exception as e:
                print(f"[FIRESTORE-ERROR] Change handler failed: {e}")
        return event

    def _write_default(self) -> None:
        print(f"[FIRESTORE] {self._doc_ref.path} missing, creating {{{self._field}: {self._default_state}}}")
        try:
            self._doc_ref.set({self._field: self._default_state})
        except Exception as e:
            self._report(SubscriptionError(f"Could not create {self._doc_ref.path}: {e}"))

    def _report(self, error: SubscriptionError) -> None:
        if not self._error_callbacks:
            print(f"[FIRESTORE-ERROR] {error}")
        for callback in self._error_callbacks:
            try:
                callback(error)
            except Exception as e:
                print(f"[FIRESTORE-ERROR] Error handler failed: {e}")
