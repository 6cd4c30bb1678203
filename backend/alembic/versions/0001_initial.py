"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

APPOINTMENT_STATUSES = (
    "booked",
    "rescheduled",
    "completed",
    "cancelled",
    "no_show",
    "ensured",
    "confirmed",
    "check_in",
    "checked_in",
    "pending",
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column(
            "role",
            sa.Enum("owner", "admin", "staff", name="role_enum"),
            nullable=False,
            server_default="staff",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default="-"),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("email_or_lineid", sa.String(length=320), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("phone"),
    )
    op.create_index("ix_customers_phone", "customers", ["phone"])

    op.create_table(
        "treatments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "packages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("sessions_total", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("mask_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price_thb", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "customer_packages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("package_id", sa.Uuid(), sa.ForeignKey("packages.id"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "completed", name="customer_package_status"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("note", sa.Text(), nullable=True),
    )
    op.create_index("ix_customer_packages_customer_id", "customer_packages", ["customer_id"])

    op.create_table(
        "appointments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("treatment_id", sa.Uuid(), sa.ForeignKey("treatments.id"), nullable=True),
        sa.Column("branch_id", sa.String(length=64), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*APPOINTMENT_STATUSES, name="appointment_status"),
            nullable=False,
            server_default="booked",
        ),
        sa.Column(
            "source",
            sa.Enum("WEB", "ADMIN", "SHEET", name="appointment_source"),
            nullable=False,
            server_default="WEB",
        ),
        sa.Column("raw_sheet_uuid", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("raw_sheet_uuid", name="appointments_raw_sheet_uuid_key"),
    )
    op.create_index("ix_appointments_customer_id", "appointments", ["customer_id"])
    op.create_index("ix_appointments_branch_scheduled", "appointments", ["branch_id", "scheduled_at"])

    op.create_table(
        "package_usages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "customer_package_id", sa.Uuid(), sa.ForeignKey("customer_packages.id"), nullable=False
        ),
        sa.Column("appointment_id", sa.Uuid(), sa.ForeignKey("appointments.id"), nullable=False),
        sa.Column("session_no", sa.Integer(), nullable=False),
        sa.Column("used_mask", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("staff_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.UniqueConstraint("appointment_id", name="package_usages_appointment_id_key"),
        sa.UniqueConstraint(
            "customer_package_id", "session_no", name="package_usages_package_session_key"
        ),
    )
    op.create_index(
        "ix_package_usages_customer_package_id", "package_usages", ["customer_package_id"]
    )

    # AppointmentEvent rows are append-only; no updated_at.
    op.create_table(
        "appointment_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("appointment_id", sa.Uuid(), sa.ForeignKey("appointments.id"), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("event_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column(
            "actor",
            sa.Enum("customer", "staff", "system", name="appointment_event_actor"),
            nullable=False,
            server_default="staff",
        ),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=False),
    )
    op.create_index("ix_appointment_events_appointment_id", "appointment_events", ["appointment_id"])


def downgrade() -> None:
    op.drop_index("ix_appointment_events_appointment_id", table_name="appointment_events")
    op.drop_table("appointment_events")
    op.drop_index("ix_package_usages_customer_package_id", table_name="package_usages")
    op.drop_table("package_usages")
    op.drop_index("ix_appointments_branch_scheduled", table_name="appointments")
    op.drop_index("ix_appointments_customer_id", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_customer_packages_customer_id", table_name="customer_packages")
    op.drop_table("customer_packages")
    op.drop_table("packages")
    op.drop_table("treatments")
    op.drop_index("ix_customers_phone", table_name="customers")
    op.drop_table("customers")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS appointment_event_actor")
    op.execute("DROP TYPE IF EXISTS appointment_source")
    op.execute("DROP TYPE IF EXISTS appointment_status")
    op.execute("DROP TYPE IF EXISTS customer_package_status")
    op.execute("DROP TYPE IF EXISTS role_enum")
