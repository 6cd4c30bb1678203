from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from app.models import AppointmentStatus, CustomerPackageStatus, PackageUsage
from app.scripts import fix_booked_usage
from app.services.consistency import check_appointment_consistency, find_pre_service_with_usage


def _seed_stray_usage(db, make_package, make_customer_package, make_appointment):
    customer_package = make_customer_package(
        make_package(sessions_total=1, mask_total=0), status=CustomerPackageStatus.completed
    )
    stray = make_appointment(status=AppointmentStatus.booked)
    db.add(
        PackageUsage(
            customer_package_id=customer_package.id,
            appointment_id=stray.id,
            session_no=1,
            used_mask=False,
        )
    )
    db.commit()
    return stray, customer_package


def test_consistency_flags_booked_with_usage(db, make_package, make_customer_package, make_appointment):
    stray, customer_package = _seed_stray_usage(db, make_package, make_customer_package, make_appointment)

    report = check_appointment_consistency(db, appointment_id=stray.id)

    assert report.ok is False
    assert report.booked_without_usage is False
    assert report.warnings == ["Status is booked but package usage rows exist"]
    assert report.packages[str(customer_package.id)].sessions_remaining == 0
    assert report.as_dict()["ok"] is False


def test_dry_run_reports_without_deleting(db, make_package, make_customer_package, make_appointment):
    stray, _ = _seed_stray_usage(db, make_package, make_customer_package, make_appointment)
    make_appointment(status=AppointmentStatus.completed)

    summary = fix_booked_usage.run(db, apply=False)

    assert summary == {
        "mode": "dry-run",
        "inconsistent_appointments": 1,
        "usage_rows": 1,
        "appointment_ids": [str(stray.id)],
    }
    assert db.scalar(select(func.count()).select_from(PackageUsage)) == 1


def test_apply_deletes_usage_and_reopens_package(db, make_package, make_customer_package, make_appointment):
    stray, customer_package = _seed_stray_usage(db, make_package, make_customer_package, make_appointment)

    summary = fix_booked_usage.run(db, apply=True)
    db.commit()

    assert summary["mode"] == "apply"
    assert summary["deleted_usage_rows"] == 1
    assert db.scalar(select(func.count()).select_from(PackageUsage)) == 0
    db.refresh(customer_package)
    assert customer_package.status == CustomerPackageStatus.active
    assert find_pre_service_with_usage(db) == []
    assert check_appointment_consistency(db, appointment_id=stray.id).ok is True


def test_main_uses_session_factory(engine, db, make_package, make_customer_package, make_appointment, monkeypatch, capsys):
    _seed_stray_usage(db, make_package, make_customer_package, make_appointment)
    monkeypatch.setattr(fix_booked_usage, "SessionLocal", sessionmaker(bind=engine, autoflush=False))

    assert fix_booked_usage.main(["--apply"]) == 0

    assert '"deleted_usage_rows": 1' in capsys.readouterr().out
    assert db.scalar(select(func.count()).select_from(PackageUsage)) == 0
