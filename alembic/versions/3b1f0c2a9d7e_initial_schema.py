"""initial enrollment schema

Revision ID: 3b1f0c2a9d7e
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1f0c2a9d7e"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "courses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.UniqueConstraint("slug", name="uq_courses_slug"),
    )
    op.create_table(
        "course_modules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "course_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("courses.id"),
            nullable=False,
        ),
        sa.Column("order_index", sa.Integer, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.UniqueConstraint(
            "course_id", "order_index", name="uq_course_modules_course_order"
        ),
    )
    op.create_table(
        "lessons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "module_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("course_modules.id"),
            nullable=False,
        ),
        sa.Column("order_index", sa.Integer, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("duration_seconds", sa.Float, nullable=True),
    )
    op.create_table(
        "batches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "course_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("courses.id"),
            nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("batch_number", sa.Integer, nullable=False),
        _ts("start_date", nullable=False),
        _ts("end_date", nullable=False),
        _ts("enrollment_start_date", nullable=False),
        _ts("enrollment_end_date", nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="BDT"),
        sa.Column(
            "current_enrollment", sa.Integer, nullable=False, server_default="0"
        ),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.CheckConstraint("price >= 0", name="ck_batches_price_non_negative"),
        sa.CheckConstraint(
            "current_enrollment >= 0", name="ck_batches_enrollment_non_negative"
        ),
    )
    op.create_table(
        "counters",
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("value", sa.BigInteger, nullable=False, server_default="0"),
    )
    op.create_table(
        "enrollments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("learner_id", sa.String(255), nullable=False),
        sa.Column(
            "batch_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("batches.id"),
            nullable=False,
        ),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("enrollment_code", sa.String(64), nullable=True),
        sa.Column("payment_id", postgresql.UUID(as_uuid=True), nullable=True),
        _ts("created_at", nullable=False),
        _ts("enrolled_at"),
        _ts("completed_at"),
        sa.Column(
            "certificate_issued", sa.Boolean, nullable=False, server_default="false"
        ),
        sa.Column("status_reason", sa.Text, nullable=True),
        sa.UniqueConstraint(
            "learner_id", "batch_id", name="uq_enrollments_learner_batch"
        ),
        sa.UniqueConstraint("enrollment_code", name="uq_enrollments_code"),
    )
    op.create_index(
        "ix_enrollments_learner_status", "enrollments", ["learner_id", "status"]
    )
    op.create_index("ix_enrollments_batch_status", "enrollments", ["batch_id", "status"])

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column("learner_id", sa.String(255), nullable=False),
        sa.Column(
            "batch_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("batches.id"),
            nullable=False,
        ),
        sa.Column(
            "enrollment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("enrollments.id"),
            nullable=True,
        ),
        sa.Column("enrollment_code", sa.String(64), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("method", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column(
            "gateway_response",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _ts("created_at", nullable=False),
        _ts("verified_at"),
        sa.Column("verified_by", sa.String(255), nullable=True),
        sa.UniqueConstraint("transaction_id", name="uq_payments_transaction_id"),
    )
    op.create_index("ix_payments_learner_batch", "payments", ["learner_id", "batch_id"])

    op.create_table(
        "module_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "enrollment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("enrollments.id"),
            nullable=False,
        ),
        sa.Column(
            "module_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("course_modules.id"),
            nullable=False,
        ),
        sa.Column("status", sa.String(32), nullable=False, server_default="locked"),
        sa.Column(
            "completion_percentage", sa.Integer, nullable=False, server_default="0"
        ),
        _ts("unlocked_at"),
        _ts("started_at"),
        _ts("completed_at"),
        sa.UniqueConstraint(
            "enrollment_id", "module_id", name="uq_module_progress_enrollment_module"
        ),
        sa.CheckConstraint(
            "completion_percentage BETWEEN 0 AND 100",
            name="ck_module_progress_percentage",
        ),
    )
    op.create_table(
        "lesson_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "enrollment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("enrollments.id"),
            nullable=False,
        ),
        sa.Column(
            "lesson_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("lessons.id"),
            nullable=False,
        ),
        sa.Column(
            "module_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("course_modules.id"),
            nullable=False,
        ),
        sa.Column(
            "status", sa.String(32), nullable=False, server_default="not-started"
        ),
        sa.Column("watch_time", sa.Float, nullable=False, server_default="0"),
        sa.Column("last_position", sa.Float, nullable=False, server_default="0"),
        _ts("completed_at"),
        sa.UniqueConstraint(
            "enrollment_id", "lesson_id", name="uq_lesson_progress_enrollment_lesson"
        ),
    )
    op.create_table(
        "certificates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("certificate_code", sa.String(64), nullable=False),
        sa.Column(
            "enrollment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("enrollments.id"),
            nullable=False,
        ),
        sa.Column("learner_id", sa.String(255), nullable=False),
        sa.Column(
            "course_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("courses.id"),
            nullable=False,
        ),
        sa.Column("status", sa.String(32), nullable=False),
        _ts("requested_at", nullable=False),
        _ts("issued_at"),
        sa.Column("approved_by", sa.String(255), nullable=True),
        sa.Column("verification_url", sa.Text, nullable=True),
        sa.UniqueConstraint("certificate_code", name="uq_certificates_code"),
        sa.UniqueConstraint("enrollment_id", name="uq_certificates_enrollment"),
    )
    op.create_table(
        "student_profiles",
        sa.Column("learner_id", sa.String(255), primary_key=True),
        sa.Column(
            "enrollment_codes",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "batch_ids",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        _ts("last_enrolled_at"),
    )


def downgrade() -> None:
    op.drop_table("student_profiles")
    op.drop_table("certificates")
    op.drop_table("lesson_progress")
    op.drop_table("module_progress")
    op.drop_index("ix_payments_learner_batch", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_enrollments_batch_status", table_name="enrollments")
    op.drop_index("ix_enrollments_learner_status", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_table("counters")
    op.drop_table("batches")
    op.drop_table("lessons")
    op.drop_table("course_modules")
    op.drop_table("courses")
