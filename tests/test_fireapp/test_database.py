"""Unit tests for fireapp.database.Database (builder-style facade)."""

from dataclasses import dataclass

import pytest

from conftest import FakeBackend, FakeError, Recorder
from fireapp.backends.null import NullBackend
from fireapp.callbacks import CompleteCallbacks, DataCallbacks
from fireapp.config import FireappConfig
from fireapp.database import Database, DatabaseReference
from fireapp.errors import (
    DatabaseError,
    DatabaseReferenceNotSetError,
    FireappError,
    UnsupportedValueError,
    ValueConversionError,
    ValueNotFoundError,
)


@dataclass
class User:
    name: str
    age: int = 0


def _terminal_ops(recorder: Recorder):
    return {
        "set_value": lambda db: db.set_value(1, recorder),
        "set_value_no_callback": lambda db: db.set_value(1),
        "read_value": lambda db: db.read_value(int, recorder),
        "on_data_change": lambda db: db.on_data_change(int, recorder),
        "stop_observing": lambda db: db.on_data_change(int, None),
        "remove_value": lambda db: db.remove_value(recorder),
        "update_children": lambda db: db.update_children({"a": 1}, recorder),
        "transaction": lambda db: db.transaction(int, lambda x: x, recorder),
    }


# ---------------------------------------------------------------------------
# Location lifecycle
# ---------------------------------------------------------------------------


class TestLocationLifecycle:
    @pytest.mark.parametrize("op", list(_terminal_ops(Recorder())))
    def test_terminal_op_without_reference_raises(self, db: Database, recorder: Recorder, op: str):
        with pytest.raises(DatabaseReferenceNotSetError):
            _terminal_ops(recorder)[op](db)

    @pytest.mark.parametrize("op", list(_terminal_ops(Recorder())))
    def test_terminal_op_resets_selection(self, db: Database, recorder: Recorder, op: str):
        db.in_reference("users/1")
        _terminal_ops(recorder)[op](db)
        assert db.current_path is None

    @pytest.mark.parametrize("op", list(_terminal_ops(Recorder())))
    def test_second_op_needs_new_reference(self, db: Database, recorder: Recorder, op: str):
        db.in_reference("users/1")
        _terminal_ops(recorder)[op](db)
        with pytest.raises(DatabaseReferenceNotSetError):
            _terminal_ops(recorder)[op](db)

    def test_reset_happens_before_completion(self, db: Database):
        seen = []
        db.in_reference("a").set_value(1, CompleteCallbacks(success=lambda: seen.append(db.current_path)))
        assert seen == [None]

    def test_in_reference_overwrites(self, db: Database, backend: FakeBackend):
        db.in_reference("a").in_reference("b").set_value(1)
        assert backend.calls == [("set", "b", 1)]

    def test_push_without_reference_raises(self, db: Database):
        with pytest.raises(DatabaseReferenceNotSetError):
            db.push()

    def test_push_appends_generated_key(self, db: Database):
        db.in_reference("a").push()
        assert db.current_path == "a/id1"

    def test_push_then_set(self, db: Database, backend: FakeBackend):
        db.in_reference("messages").push().set_value({"text": "hi"})
        assert backend.data == {"messages/id1": {"text": "hi"}}

    def test_path_is_normalised(self, db: Database):
        db.in_reference("/users//1/")
        assert db.current_path == "users/1"

    def test_keep_synced_requires_reference(self, db: Database):
        with pytest.raises(DatabaseReferenceNotSetError):
            db.keep_synced(True)

    def test_keep_synced_keeps_selection(self, db: Database, backend: FakeBackend):
        db.in_reference("scores").keep_synced(True)
        assert backend.synced == {"scores": True}
        assert db.current_path == "scores"


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


class TestWrites:
    def test_set_value_success_fires_once(self, db: Database, recorder: Recorder):
        db.in_reference("users/1").set_value({"name": "a"}, recorder)
        assert recorder.kinds() == ["success"]

    def test_set_value_error_is_translated(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.fail_with = FakeError("permission denied")
        db.in_reference("users/1").set_value({"name": "a"}, recorder)
        assert recorder.kinds() == ["error"]
        cause = recorder.events[0][1]
        assert isinstance(cause, DatabaseError)
        assert cause.description == "permission denied"

    def test_set_value_encodes_dataclass(self, db: Database, backend: FakeBackend):
        db.in_reference("users/1").set_value(User("ada", 36))
        assert backend.data["users/1"] == {"name": "ada", "age": 36}

    def test_set_value_without_callback(self, db: Database, backend: FakeBackend):
        db.in_reference("a").set_value("x")
        assert backend.data == {"a": "x"}

    def test_remove_value(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.data["a"] = 1
        db.in_reference("a").remove_value(recorder)
        assert "a" not in backend.data
        assert recorder.kinds() == ["success"]

    def test_update_children(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.data["user"] = {"name": "a", "age": 1}
        db.in_reference("user").update_children({"age": 2, "city": User("x")}, recorder)
        assert backend.data["user"] == {"name": "a", "age": 2, "city": {"name": "x", "age": 0}}
        assert recorder.kinds() == ["success"]

    def test_unstorable_value_raises_before_dispatch(self, db: Database, backend: FakeBackend, recorder: Recorder):
        with pytest.raises(UnsupportedValueError) as info:
            db.in_reference("a").set_value(object(), recorder)
        assert isinstance(info.value, FireappError)
        assert isinstance(info.value, TypeError)
        assert backend.calls == []
        assert recorder.events == []
        assert db.current_path is None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReadValue:
    def test_reads_scalar(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.data["n"] = 5
        db.in_reference("n").read_value(int, recorder)
        assert recorder.events == [("data", 5)]

    def test_reads_dataclass(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.data["users/1"] = {"name": "ada", "age": 36}
        db.in_reference("users/1").read_value(User, recorder)
        assert recorder.events == [("data", User("ada", 36))]

    def test_list_with_element_type(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.data["users"] = [{"name": "a"}, {"name": "b", "age": 2}]
        db.in_reference("users").read_value(list, recorder, element_type=User)
        assert recorder.events == [("data", [User("a"), User("b", 2)])]
        assert backend.convert_calls == []

    def test_absent_value_reports_not_found(self, db: Database, recorder: Recorder):
        db.in_reference("users/1").read_value(dict, recorder)
        assert recorder.kinds() == ["error"]
        cause = recorder.events[0][1]
        assert isinstance(cause, ValueNotFoundError)
        assert cause.path == "users/1"

    def test_conversion_failure_goes_to_on_error(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.data["n"] = "not a number"
        db.in_reference("n").read_value(int, recorder)
        assert recorder.kinds() == ["error"]
        assert isinstance(recorder.events[0][1], ValueConversionError)

    def test_cancelled_read(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.fail_with = FakeError("denied")
        db.in_reference("n").read_value(int, recorder)
        assert recorder.kinds() == ["error"]

    def test_function_callbacks(self, db: Database, backend: FakeBackend):
        backend.data["n"] = 1
        seen = []
        db.in_reference("n").read_value(int, DataCallbacks(data=seen.append))
        assert seen == [1]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransaction:
    def test_two_increments(self, db: Database, backend: FakeBackend, recorder: Recorder):
        backend.data["counter"] = 0
        db.in_reference("counter").transaction(int, lambda x: x + 1, recorder)
        db.in_reference("counter").transaction(int, lambda x: x + 1, recorder)
        assert backend.data["counter"] == 2
        assert recorder.kinds() == ["success", "success"]

    def test_absent_value_passed_as_none(self, db: Database, backend: FakeBackend):
        seen = []

        def _transform(value):
            seen.append(value)
            return 10

        db.in_reference("fresh").transaction(int, _transform)
        assert seen == [None]
        assert backend.data["fresh"] == 10

    def test_raising_transform_reports_error(self, db: Database, recorder: Recorder, backend: FakeBackend):
        backend.data["counter"] = 1

        def _boom(_):
            raise RuntimeError("nope")

        db.in_reference("counter").transaction(int, _boom, recorder)
        assert recorder.kinds() == ["error"]
        assert backend.data["counter"] == 1

    def test_map_transaction(self, db: Database, backend: FakeBackend):
        backend.data["stats"] = {"wins": 1}
        db.in_reference("stats").transaction(dict, lambda m: {**m, "wins": m["wins"] + 1})
        assert backend.data["stats"] == {"wins": 2}
        assert backend.convert_calls == []


# ---------------------------------------------------------------------------
# Listeners and connectivity through the facade
# ---------------------------------------------------------------------------


class TestObservers:
    def test_observe_then_stop(self, db: Database, backend: FakeBackend, recorder: Recorder):
        db.in_reference("score").on_data_change(int, recorder)
        backend.emit("score", 1)
        backend.emit("score", 2)
        db.in_reference("score").on_data_change(int, None)
        backend.emit("score", 3)
        assert recorder.events == [("change", 1), ("change", 2)]
        assert db.listeners.count("score") == 0

    def test_on_connect(self, db: Database, backend: FakeBackend, recorder: Recorder):
        db.on_connect(recorder)
        backend.emit(".info/connected", True)
        backend.emit(".info/connected", False)
        assert recorder.kinds() == ["connect", "disconnect"]

    def test_persistence_is_forwarded(self, db: Database, backend: FakeBackend):
        db.set_persistence_enabled(True)
        assert backend.persistence is True


# ---------------------------------------------------------------------------
# Explicit references
# ---------------------------------------------------------------------------


class TestDatabaseReference:
    def test_reference_does_not_touch_selection(self, db: Database, backend: FakeBackend):
        db.in_reference("selected")
        ref = db.reference("other")
        ref.set_value(1)
        assert db.current_path == "selected"
        assert backend.data == {"other": 1}

    def test_reference_is_reusable(self, db: Database, backend: FakeBackend, recorder: Recorder):
        ref = db.reference("counter")
        ref.set_value(0)
        ref.transaction(int, lambda x: x + 1)
        ref.read_value(int, recorder)
        assert recorder.events == [("data", 1)]

    def test_child_and_push(self, db: Database):
        ref = db.reference("rooms")
        assert ref.child("lobby/topic").path == "rooms/lobby/topic"
        pushed = ref.push()
        assert isinstance(pushed, DatabaseReference)
        assert pushed.path == "rooms/id1"
        assert pushed.key == "id1"

    def test_reference_observers(self, db: Database, backend: FakeBackend, recorder: Recorder):
        ref = db.reference("score")
        ref.on_data_change(int, recorder)
        backend.emit("score", 4)
        ref.on_data_change(int, None)
        assert recorder.events == [("change", 4)]
        assert backend.listeners == {}


# ---------------------------------------------------------------------------
# Construction and lifecycle
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_unknown_environment_gets_null_backend(self):
        db = Database(config=FireappConfig(backend="playstation"))
        assert isinstance(db.backend, NullBackend)

    def test_null_backend_does_not_crash(self, recorder: Recorder):
        db = Database(config=FireappConfig(backend=None))
        db.in_reference("a").push().set_value(1, recorder)
        db.in_reference("a").read_value(int, recorder)
        db.in_reference("a").transaction(int, lambda x: x, recorder)
        db.on_connect(recorder)
        assert recorder.events == []

    def test_set_mock_backend(self, db: Database, backend: FakeBackend, recorder: Recorder):
        db.in_reference("a").on_data_change(int, recorder)
        replacement = FakeBackend()
        db.set_mock_backend(replacement)
        assert backend.listeners == {}
        assert db.backend is replacement
        db.in_reference("a").set_value(1)
        assert replacement.data == {"a": 1}

    def test_context_manager_closes_backend(self, backend: FakeBackend, recorder: Recorder):
        with Database(backend) as d:
            d.on_connect(recorder)
        assert backend.closed
        assert backend.listeners == {}
