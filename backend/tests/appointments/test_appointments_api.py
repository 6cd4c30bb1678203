from datetime import datetime, timedelta, timezone

from app.models import AppointmentStatus, PackageUsage
from app.services import admin_status
from app.services.users import create_user


def _future_iso(days=2):
    moment = datetime.now(timezone.utc) + timedelta(days=days)
    return moment.replace(hour=4, minute=30, second=0, microsecond=0).isoformat()


def test_login_issues_usable_token(api_client, db):
    create_user(db, email="Front@Example.com", password="S3cret-pass!", full_name="Front Desk")

    res = api_client.post("/auth/login", json={"email": "front@example.com", "password": "S3cret-pass!"})
    assert res.status_code == 200, res.text
    token = res.json()["access_token"]

    queue = api_client.get("/appointments/queue", headers={"Authorization": f"Bearer {token}"})
    assert queue.status_code == 200, queue.text

    bad = api_client.post("/auth/login", json={"email": "front@example.com", "password": "wrong"})
    assert bad.status_code == 401


def test_requests_without_token_are_rejected(api_client):
    res = api_client.get("/appointments/queue")
    assert res.status_code == 401
    assert res.json()["detail"] == "Missing bearer token"


def test_book_purchase_complete_flow(api_client, headers_for, staff_user, customer, treatment, make_package):
    headers = headers_for(staff_user)
    package = make_package()

    booked = api_client.post(
        "/appointments",
        json={
            "customer_full_name": "Ploy",
            "phone": "0812345678",
            "scheduled_at": _future_iso(),
            "treatment_item_text": "1/3 smooth 2999 1 mask",
        },
        headers=headers,
    )
    assert booked.status_code == 200, booked.text
    appointment_id = booked.json()["appointment_id"]
    assert booked.json()["customer_id"] == str(customer.id)
    assert booked.json()["package_id"] == str(package.id)

    purchase = api_client.post(
        f"/customers/{customer.id}/packages",
        json={"package_id": str(package.id)},
        headers=headers,
    )
    assert purchase.status_code == 201, purchase.text
    customer_package_id = purchase.json()["customer_package_id"]
    assert purchase.json()["sessions_remaining"] == 3

    completed = api_client.post(
        f"/appointments/{appointment_id}/complete",
        json={"customer_package_id": customer_package_id, "used_mask": True},
        headers=headers,
    )
    assert completed.status_code == 200, completed.text
    body = completed.json()
    assert body["status"] == "completed"
    assert body["usage"] == {
        "customer_package_id": customer_package_id,
        "session_no": 1,
        "used_mask": True,
    }
    assert body["package"]["sessions_remaining"] == 2
    assert body["package"]["mask_remaining"] == 0

    replay = api_client.post(
        f"/appointments/{appointment_id}/complete",
        json={"customer_package_id": customer_package_id, "used_mask": True},
        headers=headers,
    )
    assert replay.status_code == 200, replay.text
    assert replay.json() == body

    detail = api_client.get(f"/appointments/{appointment_id}", headers=headers)
    assert detail.status_code == 200, detail.text
    assert detail.json()["status"] == "completed"
    assert detail.json()["package_id"] == str(package.id)
    assert detail.json()["treatment_plan_mode"] == "package"
    assert detail.json()["staff_name"] == "Nok"

    events = api_client.get(f"/appointments/{appointment_id}/events", headers=headers)
    assert sorted(event["event_type"] for event in events.json()) == ["created", "redeemed"]

    packages = api_client.get(f"/customers/{customer.id}/packages", headers=headers)
    assert packages.json()[0]["sessions_used"] == 1
    assert packages.json()[0]["last_session_no"] == 1


def test_error_envelope_for_refused_completion(api_client, headers_for, staff_user, make_appointment):
    appointment = make_appointment(status=AppointmentStatus.cancelled)

    res = api_client.post(
        f"/appointments/{appointment.id}/complete", json={}, headers=headers_for(staff_user)
    )

    assert res.status_code == 409
    assert res.json() == {
        "detail": "Cannot complete appointment in status: cancelled",
        "code": "STATE_CONFLICT",
        "invariant_violation": False,
    }


def test_unknown_appointment_is_404(api_client, headers_for, staff_user):
    res = api_client.get(
        "/appointments/00000000-0000-0000-0000-000000000000", headers=headers_for(staff_user)
    )
    assert res.status_code == 404
    assert res.json()["code"] == "NOT_FOUND"


def test_cancel_and_no_show(api_client, headers_for, staff_user, make_appointment):
    headers = headers_for(staff_user)
    first = make_appointment()
    second = make_appointment()

    cancelled = api_client.post(f"/appointments/{first.id}/cancel", json={"note": "Sick"}, headers=headers)
    assert cancelled.status_code == 200, cancelled.text
    assert cancelled.json() == {
        "appointment_id": str(first.id),
        "previous_status": "booked",
        "status": "cancelled",
    }

    missed = api_client.post(f"/appointments/{second.id}/no-show", json={}, headers=headers)
    assert missed.json()["status"] == "no_show"

    again = api_client.post(f"/appointments/{first.id}/no-show", json={}, headers=headers)
    assert again.status_code == 409
    assert again.json()["detail"] == "Cannot mark no_show from status: cancelled"


def test_revert_is_admin_only(api_client, headers_for, staff_user, admin_user, make_appointment):
    appointment = make_appointment(status=AppointmentStatus.no_show)

    denied = api_client.post(
        f"/appointments/{appointment.id}/revert", json={}, headers=headers_for(staff_user)
    )
    assert denied.status_code == 403

    res = api_client.post(
        f"/appointments/{appointment.id}/revert",
        json={"reason": "Arrived late"},
        headers=headers_for(admin_user),
    )
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "booked"
    assert res.json()["previous_status"] == "no_show"


def test_queue_lists_one_business_day(api_client, headers_for, staff_user, make_appointment):
    day_slot = datetime(2026, 11, 20, 3, 0, tzinfo=timezone.utc)
    kept = make_appointment(scheduled_at=day_slot)
    make_appointment(scheduled_at=day_slot + timedelta(hours=1), status=AppointmentStatus.cancelled)
    make_appointment(scheduled_at=day_slot, branch_id="branch-009")
    make_appointment(scheduled_at=day_slot + timedelta(days=1))
    late_local = make_appointment(scheduled_at=datetime(2026, 11, 20, 17, 30, tzinfo=timezone.utc))

    res = api_client.get(
        "/appointments/queue", params={"date": "2026-11-20"}, headers=headers_for(staff_user)
    )

    assert res.status_code == 200, res.text
    assert [item["id"] for item in res.json()] == [str(kept.id)]
    assert str(late_local.id) not in [item["id"] for item in res.json()]

    other_branch = api_client.get(
        "/appointments/queue",
        params={"date": "2026-11-20", "branch_id": "branch-009"},
        headers=headers_for(staff_user),
    )
    assert len(other_branch.json()) == 1


def test_admin_status_patch_reports_invariant_failure(
    api_client, db, headers_for, admin_user, staff_user, make_package, make_customer_package, make_appointment, monkeypatch
):
    customer_package = make_customer_package(make_package())
    appointment = make_appointment()
    api_client.post(
        f"/appointments/{appointment.id}/complete",
        json={"customer_package_id": str(customer_package.id)},
        headers=headers_for(staff_user),
    )
    monkeypatch.setattr(admin_status, "count_usage_rows", lambda db, appointment_id: 1)

    res = api_client.patch(
        f"/admin/appointments/{appointment.id}/status",
        json={"status": "booked"},
        headers=headers_for(admin_user),
    )

    assert res.status_code == 409
    assert res.json()["code"] == "USAGE_INVARIANT_FAILED"
    assert res.json()["invariant_violation"] is True
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.completed


def test_admin_status_patch_and_consistency(
    api_client, db, headers_for, admin_user, make_package, make_customer_package, make_appointment
):
    customer_package = make_customer_package(make_package())
    appointment = make_appointment(status=AppointmentStatus.completed)
    db.add(
        PackageUsage(
            customer_package_id=customer_package.id,
            appointment_id=appointment.id,
            session_no=1,
            used_mask=False,
        )
    )
    db.commit()
    headers = headers_for(admin_user)

    before = api_client.get(f"/admin/appointments/{appointment.id}/consistency", headers=headers)
    assert before.status_code == 200, before.text
    assert before.json()["ok"] is True
    assert before.json()["usage_count"] == 1

    patched = api_client.patch(
        f"/admin/appointments/{appointment.id}/status",
        json={"status": "booked", "reason": "Wrong day"},
        headers=headers,
    )
    assert patched.status_code == 200, patched.text
    assert patched.json()["reverted_usage_count"] == 1
    assert patched.json()["usage_count_after"] == 0

    after = api_client.get(f"/admin/appointments/{appointment.id}/consistency", headers=headers)
    assert after.json()["usage_count"] == 0
    assert after.json()["booked_without_usage"] is True


def test_admin_edit_and_backdate_endpoints(api_client, headers_for, admin_user, treatment, make_appointment):
    headers = headers_for(admin_user)
    appointment = make_appointment()

    edited = api_client.patch(
        f"/admin/appointments/{appointment.id}",
        json={"treatment_item_text": "Smooth 399", "treatment_plan_mode": "one_off"},
        headers=headers,
    )
    assert edited.status_code == 200, edited.text
    assert edited.json()["changed_fields"] == ["treatment_item_text", "treatment_plan_mode"]

    empty = api_client.patch(f"/admin/appointments/{appointment.id}", json={}, headers=headers)
    assert empty.status_code == 400
    assert empty.json()["detail"] == "No changes to apply"

    backdated = api_client.post(
        "/admin/appointments/backdate",
        json={
            "scheduled_at": "2025-12-01T11:00:00+07:00",
            "branch_id": "branch-003",
            "treatment_id": str(treatment.id),
            "customer_full_name": "Ploy",
            "phone": "0812345678",
            "staff_name": "Nok",
            "treatment_item_text": "Smooth",
            "reason": "Walk-in logged on paper",
        },
        headers=headers,
    )
    assert backdated.status_code == 200, backdated.text
    assert backdated.json()["status"] == "completed"
