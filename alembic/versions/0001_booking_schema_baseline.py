from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_booking_schema_baseline"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "gyms",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("timezone", sa.String(64)),
        sa.Column("default_booking_rules", JSONType),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        "membership_tiers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("gym_id", sa.String(64), sa.ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("weekly_limit", sa.Integer()),
        sa.Column("visibility", sa.String(20), server_default="public"),
        sa.Column("active", sa.Boolean(), server_default=sa.true()),
        sa.Column("price", sa.Numeric(10, 2)),
        sa.Column("interval", sa.String(20)),
    )
    op.create_index("idx_membership_tiers_gym_id", "membership_tiers", ["gym_id"])

    op.create_table(
        "gym_programs",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("gym_id", sa.String(64), sa.ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
    )
    op.create_index("idx_gym_programs_gym_id", "gym_programs", ["gym_id"])

    op.create_table(
        "program_ranks",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "program_id",
            sa.String(64),
            sa.ForeignKey("gym_programs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("idx_program_ranks_program_position", "program_ranks", ["program_id", "position"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("photo_url", sa.Text()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("class_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attendance_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attended", sa.DateTime()),
        sa.Column("converted_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        "user_memberships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("gym_id", sa.String(64), sa.ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("membership_id", sa.String(64)),
        sa.Column("status", sa.String(30)),
        sa.UniqueConstraint("user_id", "gym_id", name="user_memberships_user_id_gym_id_key"),
    )
    op.create_index("idx_user_memberships_user_id", "user_memberships", ["user_id"])

    op.create_table(
        "member_ranks",
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("program_id", sa.String(64), primary_key=True),
        sa.Column("rank_id", sa.String(64)),
        sa.Column("stripes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "classes",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("gym_id", sa.String(64), sa.ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("instructor_name", sa.String(255)),
        sa.Column("time", sa.String(5), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("days", JSONType),
        sa.Column("start_date", sa.String(10)),
        sa.Column("max_capacity", sa.Integer()),
        sa.Column("credit_cost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("drop_in_enabled", sa.Boolean(), server_default=sa.false()),
        sa.Column("allowed_membership_ids", JSONType),
        sa.Column("booking_rules", JSONType),
        sa.Column("cancelled_dates", JSONType),
        sa.Column("recurrence_end_date", sa.String(10)),
        sa.Column("program_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.current_timestamp()),
    )
    op.create_index("idx_classes_gym_id", "classes", ["gym_id"])

    op.create_table(
        "class_instance_locks",
        sa.Column("class_id", sa.String(64), primary_key=True),
        sa.Column("date_string", sa.String(10), primary_key=True),
        sa.Column("gym_id", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        "attendance",
        sa.Column("id", sa.String(200), primary_key=True),
        sa.Column("gym_id", sa.String(64), sa.ForeignKey("gyms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("class_id", sa.String(64), nullable=False),
        sa.Column("class_name", sa.String(255)),
        sa.Column("instructor_name", sa.String(255)),
        sa.Column("date_string", sa.String(10), nullable=False),
        sa.Column("class_time", sa.String(5)),
        sa.Column("class_timestamp", sa.DateTime()),
        sa.Column("member_id", sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("member_name", sa.String(255)),
        sa.Column("member_photo", sa.Text()),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("booking_type", sa.String(20), nullable=False, server_default="unknown"),
        sa.Column("cost_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("booking_rules_snapshot", JSONType),
        sa.Column("program_id", sa.String(64)),
        sa.Column("booked_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("checked_in_at", sa.DateTime()),
        sa.Column("cancelled_at", sa.DateTime()),
        sa.Column("refunded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("refund_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("late_cancel", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("late_cancel_fee_applied", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("promoted_at", sa.DateTime()),
    )
    op.create_index("idx_attendance_instance_status", "attendance", ["class_id", "date_string", "status"])
    op.create_index("idx_attendance_instance_booked_at", "attendance", ["class_id", "date_string", "booked_at"])
    op.create_index("idx_attendance_gym_member_date", "attendance", ["gym_id", "member_id", "date_string"])
    op.create_index("idx_attendance_gym_date", "attendance", ["gym_id", "date_string"])

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("gym_id", sa.String(64)),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("created_by", sa.String(64), nullable=False, server_default="system"),
        sa.Column("attendance_id", sa.String(200)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_credit_ledger_user_created", "credit_ledger", ["user_id", "created_at"])
    op.create_index("idx_credit_ledger_user_gym", "credit_ledger", ["user_id", "gym_id"])


def downgrade() -> None:
    for table in (
        "credit_ledger",
        "attendance",
        "class_instance_locks",
        "classes",
        "member_ranks",
        "user_memberships",
        "users",
        "program_ranks",
        "gym_programs",
        "membership_tiers",
        "gyms",
    ):
        op.drop_table(table)
