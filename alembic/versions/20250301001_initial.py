"""Initial Slotbook schema."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20250301001"
down_revision = None
branch_labels = None
depends_on = None


slot_status_enum = sa.Enum("AVAILABLE", "BOOKED", "BLOCKED", name="schedule_slot_status")
appointment_status_enum = sa.Enum(
    "SCHEDULED", "CONFIRMED", "COMPLETED", "CANCELLED", "NO_SHOW",
    name="appointment_status",
)
appointment_type_enum = sa.Enum(
    "general", "followup", "urgent", "checkup", name="appointment_type"
)
exception_kind_enum = sa.Enum("DAY_OFF", "CUSTOM_HOURS", name="schedule_exception_kind")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "providers",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("specialty", sa.String(length=255), nullable=True),
        sa.Column(
            "slots_per_appointment", sa.Integer(), nullable=False, server_default=sa.text("2")
        ),
        sa.Column(
            "max_appointments_per_day", sa.Integer(), nullable=False, server_default=sa.text("12")
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_providers_is_active", "providers", ["is_active"], unique=False)

    op.create_table(
        "patients",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
    )
    op.create_index("ix_patients_phone_number", "patients", ["phone_number"], unique=False)

    op.create_table(
        "provider_schedules",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("provider_id", "day_of_week", name="uq_provider_schedules_day"),
    )
    op.create_index(
        "ix_provider_schedules_provider_id", "provider_schedules", ["provider_id"], unique=False
    )

    op.create_table(
        "schedule_exceptions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("kind", exception_kind_enum, nullable=False, server_default="DAY_OFF"),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("provider_id", "date", name="uq_schedule_exceptions_day"),
    )
    op.create_index(
        "ix_schedule_exceptions_provider_id", "schedule_exceptions", ["provider_id"], unique=False
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("patient_id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("call_id", sa.Uuid(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("slot_count", sa.Integer(), nullable=False),
        sa.Column("status", appointment_status_enum, nullable=False, server_default="SCHEDULED"),
        sa.Column("type", appointment_type_enum, nullable=False, server_default="general"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_appointments_provider_date", "appointments", ["provider_id", "date"], unique=False
    )
    op.create_index(
        "ix_appointments_patient_date", "appointments", ["patient_id", "date"], unique=False
    )

    op.create_table(
        "schedule_slots",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("slot_number", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", slot_status_enum, nullable=False, server_default="AVAILABLE"),
        sa.Column("appointment_id", sa.Uuid(), nullable=True),
        sa.Column("blocked_reason", sa.String(length=255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "provider_id", "date", "slot_number", name="uq_schedule_slots_number"
        ),
    )
    op.create_index(
        "ix_schedule_slots_provider_id", "schedule_slots", ["provider_id"], unique=False
    )
    op.create_index(
        "ix_schedule_slots_appointment_id", "schedule_slots", ["appointment_id"], unique=False
    )
    op.create_index(
        "ix_schedule_slots_provider_date_status",
        "schedule_slots",
        ["provider_id", "date", "status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_schedule_slots_provider_date_status", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_appointment_id", table_name="schedule_slots")
    op.drop_index("ix_schedule_slots_provider_id", table_name="schedule_slots")
    op.drop_table("schedule_slots")
    op.drop_index("ix_appointments_patient_date", table_name="appointments")
    op.drop_index("ix_appointments_provider_date", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_schedule_exceptions_provider_id", table_name="schedule_exceptions")
    op.drop_table("schedule_exceptions")
    op.drop_index("ix_provider_schedules_provider_id", table_name="provider_schedules")
    op.drop_table("provider_schedules")
    op.drop_index("ix_patients_phone_number", table_name="patients")
    op.drop_table("patients")
    op.drop_index("ix_providers_is_active", table_name="providers")
    op.drop_table("providers")

    bind = op.get_bind()
    for enum_type in (
        slot_status_enum,
        appointment_type_enum,
        appointment_status_enum,
        exception_kind_enum,
    ):
        enum_type.drop(bind, checkfirst=True)
