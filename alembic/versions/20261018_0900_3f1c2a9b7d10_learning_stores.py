"""learning_stores

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-10-18 09:00:00.000000+00:00

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "3f1c2a9b7d10"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "engine_weights",
        sa.Column("source_id", sa.String(length=100), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        sa.Column("wins", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("losses", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.CheckConstraint(
            "weight >= 0.1 AND weight <= 2.0", name=op.f("ck_engine_weights_weight_range")
        ),
        sa.CheckConstraint(
            "wins >= 0 AND losses >= 0", name=op.f("ck_engine_weights_counts_non_negative")
        ),
        sa.PrimaryKeyConstraint("source_id", name=op.f("pk_engine_weights")),
    )

    op.create_table(
        "system_adaptations",
        sa.Column("param_key", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("param_key", name=op.f("pk_system_adaptations")),
    )

    op.create_table(
        "trade_outcomes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("outcome_key", sa.String(length=200), nullable=False),
        sa.Column("ticker", sa.String(length=20), nullable=False),
        sa.Column("pnl_percent", sa.Float(), nullable=False),
        sa.Column(
            "contributing_source_ids",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
        ),
        sa.Column("sector", sa.String(length=100), nullable=True),
        sa.Column("predicted_confidence", sa.Integer(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_trade_outcomes")),
        sa.UniqueConstraint("outcome_key", name=op.f("uq_trade_outcomes_outcome_key")),
    )
    op.create_index(
        "idx_trade_outcomes_pending", "trade_outcomes", ["processed_at", "id"], unique=False
    )
    op.create_index("idx_trade_outcomes_sector", "trade_outcomes", ["sector"], unique=False)
    op.create_index(
        "idx_trade_outcomes_closed_at", "trade_outcomes", ["closed_at"], unique=False
    )

    # Seed default adaptive parameters
    op.execute("""
        INSERT INTO system_adaptations (param_key, value, description) VALUES
        ('stop_loss_padding', 1.0, 'Multiplier applied to every stop distance'),
        ('conviction_threshold', 70.0, 'Confidence at which Kelly sizing is anchored'),
        ('max_allocation_cap', 15.0, 'Hard ceiling on allocation_percent')
        ON CONFLICT (param_key) DO NOTHING
    """)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("idx_trade_outcomes_closed_at", table_name="trade_outcomes")
    op.drop_index("idx_trade_outcomes_sector", table_name="trade_outcomes")
    op.drop_index("idx_trade_outcomes_pending", table_name="trade_outcomes")
    op.drop_table("trade_outcomes")
    op.drop_table("system_adaptations")
    op.drop_table("engine_weights")
