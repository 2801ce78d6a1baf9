from alembic import op
import sqlalchemy as sa

revision = "0002_per_gym_credit_balances"
down_revision = "0001_booking_schema_baseline"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "member_credit_balances",
        sa.Column("user_id", sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("gym_id", sa.String(64), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
    )

    # Balances are rebuilt from the gym-scoped ledger; entries without a gym stay unattributed.
    op.execute(
        """
        INSERT INTO member_credit_balances (user_id, gym_id, balance)
        SELECT user_id, gym_id, SUM(amount)
        FROM credit_ledger
        WHERE gym_id IS NOT NULL
        GROUP BY user_id, gym_id
        """
    )

    with op.batch_alter_table("users") as batch:
        batch.drop_column("class_credits")


def downgrade() -> None:
    with op.batch_alter_table("users") as batch:
        batch.add_column(sa.Column("class_credits", sa.Integer(), nullable=False, server_default="0"))

    op.execute(
        """
        UPDATE users SET class_credits = COALESCE(
            (SELECT SUM(b.balance) FROM member_credit_balances b WHERE b.user_id = users.id), 0
        )
        """
    )
    op.drop_table("member_credit_balances")
