"""Initial punch audit schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


attendance_status = postgresql.ENUM("PRESENT", "ABSENT", "PARTIAL", name="attendance_status", create_type=False)
sync_batch_source = postgresql.ENUM("SYNC", "UPLOAD", name="sync_batch_source", create_type=False)
discrepancy_rule = postgresql.ENUM(
    "LOG_AFTER_EXIT",
    "NO_ATTENDANCE",
    "OUTSIDE_HOURS",
    "ZERO_PRESENCE",
    name="discrepancy_rule",
    create_type=False,
)
discrepancy_severity = postgresql.ENUM("low", "medium", "high", name="discrepancy_severity", create_type=False)
discrepancy_status = postgresql.ENUM("open", "resolved", name="discrepancy_status", create_type=False)
audit_actor_type = postgresql.ENUM("MANAGER", "EMPLOYEE", "SYSTEM", name="audit_actor_type", create_type=False)

_ENUMS = (
    attendance_status,
    sync_batch_source,
    discrepancy_rule,
    discrepancy_severity,
    discrepancy_status,
    audit_actor_type,
)


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _jsonb_list_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        nullable=False,
        server_default=sa.text("'[]'::jsonb"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("employee_code", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_employees_employee_code", "employees", ["employee_code"], unique=False)

    op.create_table(
        "sync_batches",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("source", sync_batch_source, nullable=False),
        sa.Column("range_start", sa.Date(), nullable=True),
        sa.Column("range_end", sa.Date(), nullable=True),
        sa.Column("punches_received", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("punches_dropped", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("records_written", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _jsonb_list_column("unmatched_names"),
        sa.Column("created_by", sa.String(length=255), nullable=False, server_default=sa.text("'system'")),
        _timestamp_column("created_at"),
    )

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_name", sa.String(length=255), nullable=False),
        sa.Column("employee_code", sa.String(length=64), nullable=True),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("day_date", sa.Date(), nullable=False),
        _jsonb_list_column("in_out_periods"),
        _jsonb_list_column("unpaired_ins"),
        _jsonb_list_column("unpaired_outs"),
        sa.Column("first_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("shift", sa.String(length=64), nullable=True),
        sa.Column("is_overtime", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("batch_id", sa.Integer(), nullable=True),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["batch_id"], ["sync_batches.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_attendance_records_employee_name", "attendance_records", ["employee_name"], unique=False)
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index("ix_attendance_records_day_date", "attendance_records", ["day_date"], unique=False)
    op.create_index("ix_attendance_records_batch_id", "attendance_records", ["batch_id"], unique=False)

    op.create_table(
        "time_entries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(length=128), nullable=False),
        sa.Column("task_name", sa.String(length=512), nullable=True),
        sa.Column("logged_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=False),
        _timestamp_column("synced_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("external_id", name="uq_time_entries_external_id"),
    )
    op.create_index("ix_time_entries_external_id", "time_entries", ["external_id"], unique=False)
    op.create_index("ix_time_entries_employee_id", "time_entries", ["employee_id"], unique=False)
    op.create_index("ix_time_entries_start_at", "time_entries", ["start_at"], unique=False)

    op.create_table(
        "discrepancies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("rule", discrepancy_rule, nullable=False),
        sa.Column("severity", discrepancy_severity, nullable=False),
        sa.Column("minutes_involved", sa.Integer(), nullable=False),
        sa.Column("status", discrepancy_status, nullable=False, server_default=sa.text("'open'")),
        sa.Column(
            "evidence",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("resolved_reason", sa.String(length=255), nullable=True),
        sa.Column("resolved_note", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.String(length=255), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_discrepancies_employee_id", "discrepancies", ["employee_id"], unique=False)
    op.create_index("ix_discrepancies_day_date", "discrepancies", ["day_date"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _timestamp_column("ts_utc"),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_discrepancies_day_date", table_name="discrepancies")
    op.drop_index("ix_discrepancies_employee_id", table_name="discrepancies")
    op.drop_table("discrepancies")
    op.drop_index("ix_time_entries_start_at", table_name="time_entries")
    op.drop_index("ix_time_entries_employee_id", table_name="time_entries")
    op.drop_index("ix_time_entries_external_id", table_name="time_entries")
    op.drop_table("time_entries")
    op.drop_index("ix_attendance_records_batch_id", table_name="attendance_records")
    op.drop_index("ix_attendance_records_day_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_name", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_table("sync_batches")
    op.drop_index("ix_employees_employee_code", table_name="employees")
    op.drop_table("employees")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
