"""create course read model and enrollments

Revision ID: 3b7c9d21a4f0
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7c9d21a4f0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "courses",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("enrollment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rating_average", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "course_modules",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "course_id", sa.String(length=64), sa.ForeignKey("courses.id"), nullable=False
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(length=500), nullable=False),
    )
    op.create_index("ix_course_modules_course_id", "course_modules", ["course_id"])

    op.create_table(
        "module_items",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "module_id",
            sa.String(length=64),
            sa.ForeignKey("course_modules.id"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_module_items_module_id", "module_items", ["module_id"])

    op.create_table(
        "enrollments",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("learner_id", sa.String(length=64), nullable=False),
        sa.Column("course_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column(
            "progress",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "completion_percentage", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("enrolled_at", sa.BigInteger(), nullable=False),
        sa.Column("last_accessed_at", sa.BigInteger(), nullable=True),
        sa.Column("completed_at", sa.BigInteger(), nullable=True),
        sa.Column(
            "payment_status", sa.String(length=16), nullable=False, server_default="free"
        ),
        sa.Column("payment_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rating", postgresql.JSONB(none_as_null=True), nullable=True),
        sa.Column(
            "certificate_issued", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("certificate_issued_at", sa.BigInteger(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint(
            "learner_id", "course_id", name="uq_enrollment_learner_course"
        ),
    )
    op.create_index("ix_enrollments_learner_id", "enrollments", ["learner_id"])
    op.create_index("ix_enrollments_course_id", "enrollments", ["course_id"])
    op.create_index("ix_enrollments_status", "enrollments", ["status"])
    op.create_index("ix_enrollments_enrolled_at", "enrollments", ["enrolled_at"])


def downgrade() -> None:
    op.drop_index("ix_enrollments_enrolled_at", table_name="enrollments")
    op.drop_index("ix_enrollments_status", table_name="enrollments")
    op.drop_index("ix_enrollments_course_id", table_name="enrollments")
    op.drop_index("ix_enrollments_learner_id", table_name="enrollments")
    op.drop_table("enrollments")
    op.drop_index("ix_module_items_module_id", table_name="module_items")
    op.drop_table("module_items")
    op.drop_index("ix_course_modules_course_id", table_name="course_modules")
    op.drop_table("course_modules")
    op.drop_table("courses")
