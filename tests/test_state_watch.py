import threading
import time

import pytest

from state_watch import DoorStateChanged, StateWatch, SubscriptionError


class FakeSnapshot:
    def __init__(self, data=None, exists=True):
        self._data = data
        self.exists = exists

    def to_dict(self):
        return self._data if self.exists else None


class FakeWatchHandle:
    def __init__(self):
        self.unsubscribed = False
        self.is_active = True

    def unsubscribe(self):
        self.unsubscribed = True
        self.is_active = False


class FakeDocRef:
    """Records writes and exposes the registered snapshot callback."""

    path = "doorState/current"

    def __init__(self, set_error=None, watch_error=None):
        self.writes = []
        self.callback = None
        self.handle = FakeWatchHandle()
        self._set_error = set_error
        self._watch_error = watch_error

    def set(self, data):
        if self._set_error:
            raise self._set_error
        self.writes.append(data)

    def on_snapshot(self, callback):
        if self._watch_error:
            raise self._watch_error
        self.callback = callback
        return self.handle


@pytest.fixture
def doc_ref():
    return FakeDocRef()


@pytest.fixture
def watch(doc_ref):
    return StateWatch(doc_ref)


@pytest.fixture
def changes(watch):
    seen = []
    watch.on_change(seen.append)
    return seen


def test_missing_document_writes_default_without_emitting(watch, doc_ref, changes):
    assert watch.handle_snapshot(FakeSnapshot(exists=False)) is None
    assert doc_ref.writes == [{"state": "closed"}]
    assert changes == []


def test_empty_watch_delivery_treated_as_missing(watch, doc_ref, changes):
    watch.start()
    doc_ref.callback([], [], None)
    assert doc_ref.writes == [{"state": "closed"}]
    assert changes == []


@pytest.mark.parametrize("data", [{}, {"state": ""}, {"state": None}, {"other": "open"}, None])
def test_document_without_state_is_ignored(watch, doc_ref, changes, data):
    assert watch.handle_snapshot(FakeSnapshot(data)) is None
    assert changes == []
    assert doc_ref.writes == []


def test_populated_state_is_emitted(watch, changes):
    event = watch.handle_snapshot(FakeSnapshot({"state": "open"}), read_time="t1")
    assert event == DoorStateChanged("open", "t1")
    assert changes == [event]


def test_identical_states_are_emitted_every_time(watch, changes):
    watch.handle_snapshot(FakeSnapshot({"state": "open"}))
    watch.handle_snapshot(FakeSnapshot({"state": "open"}))
    assert [c.value for c in changes] == ["open", "open"]


def test_unrecognised_state_is_still_emitted(watch, changes):
    watch.handle_snapshot(FakeSnapshot({"state": "ajar"}))
    assert [c.value for c in changes] == ["ajar"]


def test_snapshot_callback_routes_to_handler(watch, doc_ref, changes):
    assert watch.start()
    doc_ref.callback([FakeSnapshot({"state": "closed"})], [], "read-time")
    assert changes == [DoorStateChanged("closed", "read-time")]


def test_start_is_idempotent_and_stop_unsubscribes(watch, doc_ref):
    assert watch.start()
    assert watch.start()
    watch.stop()
    assert doc_ref.handle.unsubscribed
    watch.stop()


def test_start_failure_is_reported(capsys):
    watch = StateWatch(FakeDocRef(watch_error=RuntimeError("no credentials")))
    errors = []
    watch.on_error(errors.append)

    assert watch.start() is False
    assert len(errors) == 1
    assert isinstance(errors[0], SubscriptionError)
    assert "no credentials" in str(errors[0])


def test_default_write_failure_is_reported():
    watch = StateWatch(FakeDocRef(set_error=RuntimeError("PERMISSION_DENIED")))
    errors = []
    watch.on_error(errors.append)

    watch.handle_snapshot(None)

    assert "PERMISSION_DENIED" in str(errors[0])


def test_change_handler_failure_does_not_close_watch(watch, doc_ref, capsys):
    def broken(event):
        raise RuntimeError("handler broke")

    watch.on_change(broken)
    later = []
    watch.on_change(later.append)
    watch.start()

    doc_ref.callback([FakeSnapshot({"state": "open"})], [], None)

    assert [e.value for e in later] == ["open"]
    assert "handler broke" in capsys.readouterr().out


def test_error_without_handlers_is_printed(capsys):
    watch = StateWatch(FakeDocRef(watch_error=RuntimeError("offline")))
    watch.start()
    assert "[FIRESTORE-ERROR]" in capsys.readouterr().out


def test_custom_field_and_default():
    doc_ref = FakeDocRef()
    watch = StateWatch(doc_ref, field="desired", default_state="open")
    seen = []
    watch.on_change(seen.append)

    watch.handle_snapshot(None)
    watch.handle_snapshot(FakeSnapshot({"desired": "closed", "state": "open"}))

    assert doc_ref.writes == [{"desired": "open"}]
    assert [e.value for e in seen] == ["closed"]


def test_listener_dying_after_start_is_reported_once():
    doc_ref = FakeDocRef()
    watch = StateWatch(doc_ref, health_interval=0.01)
    errors = []
    reported = threading.Event()

    def on_error(error):
        errors.append(error)
        reported.set()

    watch.on_error(on_error)
    assert watch.start()
    time.sleep(0.05)
    assert errors == []

    doc_ref.handle.is_active = False  # Stream closed by the server

    assert reported.wait(2)
    time.sleep(0.05)
    assert len(errors) == 1
    assert isinstance(errors[0], SubscriptionError)
    assert "doorState/current" in str(errors[0])
    assert doc_ref.writes == []


def test_stop_does_not_report_listener_as_dead():
    doc_ref = FakeDocRef()
    watch = StateWatch(doc_ref, health_interval=0.01)
    errors = []
    watch.on_error(errors.append)

    watch.start()
    watch.stop()
    time.sleep(0.1)

    assert doc_ref.handle.unsubscribed
    assert errors == []
