import pytest

from app.models import AppointmentStatus
from app.services.admin_appointments import patch_admin_appointment
from app.services.appointment_events import load_appointment_events, resolve_current_fields
from app.services.errors import ActorRequired, ValidationFailed


def _edit(db, appointment, actor, **changes):
    result = patch_admin_appointment(db, appointment_id=appointment.id, actor=actor, **changes)
    db.commit()
    return result


def _admin_updates(db, appointment):
    return [
        event for event in load_appointment_events(db, appointment.id) if event.event_type == "admin_update"
    ]


def test_text_edit_keeps_previously_linked_package(db, admin_user, make_package, make_appointment):
    package = make_package()
    appointment = make_appointment()

    linked = _edit(db, appointment, admin_user, package_id=str(package.id))
    assert linked.changed_fields == ["package_id", "treatment_plan_mode"]
    assert linked.before == {"package_id": "", "treatment_plan_mode": ""}

    edited = _edit(db, appointment, admin_user, treatment_item_text="1/3 smooth 2999 1 mask")
    assert edited.changed_fields == ["treatment_item_text"]

    fields = resolve_current_fields(db, appointment.id)
    assert fields.package_id == str(package.id)
    assert fields.treatment_plan_mode == "package"
    assert fields.treatment_item_text == "1/3 smooth 2999 1 mask"


def test_unlink_package_writes_marker(db, admin_user, make_package, make_appointment):
    package = make_package()
    appointment = make_appointment()
    _edit(db, appointment, admin_user, package_id=str(package.id))

    result = _edit(db, appointment, admin_user, unlink_package=True, reason="Customer paid one-off")

    assert result.after == {"package_id": "", "treatment_plan_mode": "one_off", "unlink_package": True}
    assert result.before == {"package_id": str(package.id), "treatment_plan_mode": "package"}
    fields = resolve_current_fields(db, appointment.id)
    assert fields.package_id == ""
    assert fields.treatment_plan_mode == "one_off"
    latest = _admin_updates(db, appointment)[0]
    assert latest.meta["reason"] == "Customer paid one-off"
    assert latest.meta["admin_user_id"] == admin_user.id


def test_switching_to_one_off_unlinks_package(db, admin_user, make_package, make_appointment):
    package = make_package()
    appointment = make_appointment()
    _edit(db, appointment, admin_user, package_id=str(package.id))

    result = _edit(db, appointment, admin_user, treatment_plan_mode="oneoff")

    assert result.after["unlink_package"] is True
    fields = resolve_current_fields(db, appointment.id)
    assert fields.package_id == ""
    assert fields.treatment_plan_mode == "one_off"


def test_schedule_and_branch_are_written_to_the_row(db, admin_user, make_appointment):
    appointment = make_appointment()

    result = _edit(
        db,
        appointment,
        admin_user,
        scheduled_at="2026-12-01T10:00:00+07:00",
        branch_id="branch-007",
        staff_name="Fon",
    )

    assert result.changed_fields == ["branch_id", "scheduled_at"]
    assert result.after["scheduled_at"] == "2026-12-01T03:00:00+00:00"
    db.refresh(appointment)
    assert appointment.branch_id == "branch-007"
    assert _admin_updates(db, appointment)[0].meta["staff_name"] == "Fon"


def test_edit_with_deduction_completes_and_clears_warning(
    db, admin_user, make_package, make_customer_package, make_appointment
):
    customer_package = make_customer_package(make_package())
    appointment = make_appointment()

    result = _edit(
        db,
        appointment,
        admin_user,
        status="completed",
        customer_package_id=str(customer_package.id),
        reason="Missed deduction",
    )

    assert result.status == "completed"
    assert result.warnings == []
    assert result.deduction.usage.session_no == 1
    assert result.after["status"] == "completed"
    event_types = [event.event_type for event in load_appointment_events(db, appointment.id)]
    assert sorted(event_types) == ["admin_update", "redeemed"]
    assert _admin_updates(db, appointment)[0].meta["session_no"] == 1


def test_status_only_edit_reports_warning(db, admin_user, make_appointment):
    appointment = make_appointment()

    result = _edit(db, appointment, admin_user, status="no_show")

    assert result.status == "no_show"
    assert result.warnings == ["Status is no_show but no package usage is recorded."]
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.no_show
    assert len(_admin_updates(db, appointment)) == 1


@pytest.mark.parametrize(
    ("changes", "message"),
    [
        ({}, "No changes to apply"),
        ({"branch_id": "branch-003"}, "No changes to apply"),
        (
            {"package_id": "00000000-0000-0000-0000-000000000001", "unlink_package": True},
            "package_id cannot be combined with unlink_package",
        ),
        (
            {"package_id": "00000000-0000-0000-0000-000000000001", "treatment_plan_mode": "one_off"},
            "package_id cannot be combined with treatment_plan_mode one_off",
        ),
        (
            {"unlink_package": True, "treatment_plan_mode": "package"},
            "unlink_package cannot be combined with treatment_plan_mode package",
        ),
        ({"treatment_plan_mode": "course"}, "treatment_plan_mode must be one of"),
        ({"status": "booked", "customer_package_id": "x"}, "Cannot deduct package usage"),
        ({"status": "done"}, "status must be one of"),
        ({"package_id": "00000000-0000-0000-0000-000000000001"}, "Package not found"),
        ({"scheduled_at": "2026-12-01T10:00:00"}, "must include timezone offset"),
    ],
)
def test_invalid_edits_are_rejected(db, admin_user, make_appointment, changes, message):
    appointment = make_appointment()
    with pytest.raises(ValidationFailed, match=message):
        patch_admin_appointment(db, appointment_id=appointment.id, actor=admin_user, **changes)
    db.rollback()
    assert load_appointment_events(db, appointment.id) == []


def test_edit_requires_actor(db, make_appointment):
    with pytest.raises(ActorRequired):
        patch_admin_appointment(db, appointment_id=make_appointment().id, actor=None, branch_id="x")
