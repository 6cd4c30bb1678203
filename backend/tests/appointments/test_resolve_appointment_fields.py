import json
from datetime import datetime, timedelta, timezone

import pytest

from app.services.appointment_fields import (
    EventMeta,
    normalize_event_meta,
    normalize_plan_mode,
    resolve_appointment_fields,
    resolve_fields_by_appointment,
    resolve_latest_text,
    sort_events_newest_first,
)

BASE = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def event(event_id, minutes, meta, appointment_id="appt-1"):
    return {
        "id": event_id,
        "appointment_id": appointment_id,
        "event_type": "admin_update",
        "event_at": BASE + timedelta(minutes=minutes) if minutes is not None else None,
        "meta": meta,
    }


def test_newer_event_without_package_does_not_erase_older_link():
    events = [
        event("1", 0, {"after": {"package_id": "P1"}}),
        event("2", 5, {"after": {"treatment_item_text": "x"}}),
    ]
    resolved = resolve_appointment_fields(events)
    assert resolved.package_id == "P1"
    assert resolved.treatment_item_text == "x"
    assert resolved.treatment_plan_mode == "package"


def test_unlink_marker_freezes_package_as_empty():
    events = [
        event("1", 0, {"package_id": "P1", "treatment_plan_mode": "package"}),
        event("2", 5, {"after": {"unlink_package": True, "treatment_plan_mode": "one_off"}}),
        event("3", 10, {"after": {"scheduled_at": "2026-03-02T10:00:00+07:00"}}),
    ]
    resolved = resolve_appointment_fields(events)
    assert resolved.package_id == ""
    assert resolved.treatment_plan_mode == "one_off"


def test_package_linked_after_unlink_wins():
    events = [
        event("1", 0, {"package_id": "P1"}),
        event("2", 5, {"package_unlinked": True}),
        event("3", 10, {"after": {"package_id": "P2"}}),
    ]
    assert resolve_appointment_fields(events).package_id == "P2"


def test_after_layer_shadows_flat_value_in_same_event():
    events = [event("1", 0, {"package_id": "flat", "after": {"package_id": "nested"}})]
    assert resolve_appointment_fields(events).package_id == "nested"


def test_unlink_marker_must_be_literal_true():
    events = [
        event("1", 0, {"package_id": "P1"}),
        event("2", 5, {"unlink_package": "true"}),
    ]
    assert resolve_appointment_fields(events).package_id == "P1"


def test_timestamp_ties_break_on_id_descending():
    events = [
        event("a", 0, {"treatment_item_text": "older id"}),
        event("b", 0, {"treatment_item_text": "newer id"}),
    ]
    assert resolve_appointment_fields(events).treatment_item_text == "newer id"
    assert resolve_appointment_fields(list(reversed(events))).treatment_item_text == "newer id"


def test_integer_ids_break_ties_numerically():
    events = [
        event(9, 0, {"treatment_item_text": "nine"}),
        event(10, 0, {"treatment_item_text": "ten"}),
    ]
    assert resolve_appointment_fields(events).treatment_item_text == "ten"
    assert [record.id for record in sort_events_newest_first(events)] == ["10", "9"]


def test_missing_timestamps_sort_last():
    events = [
        event("9", None, {"treatment_item_text": "undated"}),
        event("1", 0, {"treatment_item_text": "dated"}),
    ]
    ordered = sort_events_newest_first(events)
    assert [record.id for record in ordered] == ["1", "9"]
    assert resolve_appointment_fields(events).treatment_item_text == "dated"


def test_resolution_is_order_independent():
    events = [
        event("1", 0, {"package_id": "P1", "treatment_item_text": "first"}),
        event("2", 1, {"after": {"treatment_plan_mode": "oneoff"}}),
        event("3", 2, {"after": {"treatment_item_text": "second"}}),
    ]
    forward = resolve_appointment_fields(events)
    backward = resolve_appointment_fields(list(reversed(events)))
    assert forward == backward
    assert forward.treatment_plan_mode == "one_off"
    assert forward.treatment_item_text == "second"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("one_off", "one_off"),
        ("ONEOFF", "one_off"),
        (" package ", "package"),
        ("course", ""),
        (None, ""),
        (3, ""),
    ],
)
def test_normalize_plan_mode(raw, expected):
    assert normalize_plan_mode(raw) == expected


def test_unknown_plan_mode_falls_through_to_older_value():
    events = [
        event("1", 0, {"treatment_plan_mode": "one_off"}),
        event("2", 5, {"treatment_plan_mode": "weird"}),
    ]
    assert resolve_appointment_fields(events).treatment_plan_mode == "one_off"


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", "", None, 42, b"\xff\xfe"])
def test_malformed_meta_is_empty(raw):
    meta = normalize_event_meta(raw)
    assert meta == EventMeta()
    assert resolve_appointment_fields([event("1", 0, raw)]).as_dict() == {
        "package_id": "",
        "treatment_plan_mode": "",
        "treatment_item_text": "",
    }


def test_meta_json_string_is_parsed():
    raw = json.dumps({"staff_name": "Nok", "after": {"package_id": "P7"}, "before": {"package_id": ""}})
    meta = normalize_event_meta(raw)
    assert meta.flat == {"staff_name": "Nok"}
    assert meta.read("package_id") == "P7"
    assert meta.before == {"package_id": ""}


def test_string_timestamps_and_orm_style_rows():
    class Row:
        def __init__(self, id, event_at, meta):
            self.id = id
            self.event_type = "created"
            self.event_at = event_at
            self.meta = meta
            self.appointment_id = "appt-9"

    rows = [
        Row("1", "2026-03-01T09:00:00Z", {"treatment_item_text": "old"}),
        Row("2", "2026-03-01T16:30:00+07:00", {"treatment_item_text": "new"}),
    ]
    assert resolve_appointment_fields(rows).treatment_item_text == "new"


def test_resolve_fields_by_appointment_groups_rows():
    rows = [
        event("1", 0, {"package_id": "P1"}, appointment_id="a"),
        event("2", 0, {"package_id": "P2"}, appointment_id="b"),
        event("3", 1, {"after": {"treatment_item_text": "b text"}}, appointment_id="b"),
    ]
    resolved = resolve_fields_by_appointment(rows)
    assert resolved["a"].package_id == "P1"
    assert resolved["b"].package_id == "P2"
    assert resolved["b"].treatment_item_text == "b text"


def test_resolve_latest_text_prefers_first_key():
    events = [
        event("1", 0, {"staff_name": "Nok"}),
        event("2", 5, {"staff_display_name": "Admin Mai"}),
    ]
    assert resolve_latest_text(events, "staff_name", "staff_display_name") == "Nok"
    assert resolve_latest_text([], "staff_name") == ""
