"""Tests for domain events and the emitter."""

import json
import logging

from salary_engine.services.events import (
    EmployeeProcessed,
    EventEmitter,
    PayrollRunStatusChanged,
)


class TestEventEmitter:
    """Test handler registration and isolation."""

    def test_typed_handler_only_sees_its_type(self):
        emitter = EventEmitter()
        seen = []
        emitter.on(EmployeeProcessed, seen.append)

        emitter.emit(PayrollRunStatusChanged(run_id="r1", from_status=None, to_status="DRAFT"))
        emitter.emit(EmployeeProcessed(run_id="r1", employee_id="e1", success=True))

        assert [e.event_type for e in seen] == ["EmployeeProcessed"]

    def test_list_of_types(self):
        emitter = EventEmitter()
        seen = []
        emitter.on([EmployeeProcessed, PayrollRunStatusChanged], seen.append)

        emitter.emit(PayrollRunStatusChanged(run_id="r1", from_status=None, to_status="DRAFT"))
        emitter.emit(EmployeeProcessed(run_id="r1", employee_id="e1", success=True))

        assert len(seen) == 2

    def test_on_all_and_off(self):
        emitter = EventEmitter()
        seen = []
        handler = seen.append
        emitter.on_all(handler)
        emitter.emit(EmployeeProcessed(run_id="r1", employee_id="e1", success=True))
        emitter.off(handler)
        emitter.emit(EmployeeProcessed(run_id="r1", employee_id="e2", success=True))

        assert [e.employee_id for e in seen] == ["e1"]

    def test_failing_handler_does_not_stop_others(self, caplog):
        emitter = EventEmitter()
        seen = []

        def broken(event):
            raise RuntimeError("mail server down")

        emitter.on_all(broken)
        emitter.on_all(seen.append)

        with caplog.at_level(logging.ERROR):
            errors = emitter.emit(EmployeeProcessed(run_id="r1", employee_id="e1", success=True))

        assert len(seen) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], RuntimeError)
        assert "Handler" in caplog.text


class TestEventSerialization:
    def test_employee_processed_to_json(self):
        event = EmployeeProcessed(
            run_id="r1",
            employee_id="e3",
            success=False,
            error_kind="NoActiveAssignment",
            error="Employee e3 has no active salary assignment",
        )
        data = json.loads(event.to_json())

        assert data["event_type"] == "EmployeeProcessed"
        assert data["employee_id"] == "e3"
        assert data["success"] is False
        assert data["error_kind"] == "NoActiveAssignment"
        assert "occurred_at" in data
