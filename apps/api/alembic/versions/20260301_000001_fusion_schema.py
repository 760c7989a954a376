"""create fusion performance and training tables

Revision ID: 20260301_000001
Revises:
Create Date: 2026-03-01 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20260301_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "performance_metrics",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_performance_metrics_source"), "performance_metrics", ["source"], unique=False)
    op.create_index(op.f("ix_performance_metrics_kind"), "performance_metrics", ["kind"], unique=False)
    op.create_index(op.f("ix_performance_metrics_recorded_at"), "performance_metrics", ["recorded_at"], unique=False)
    op.create_index(
        "ix_performance_metrics_source_kind_recorded",
        "performance_metrics",
        ["source", "kind", "recorded_at"],
        unique=False,
    )

    op.create_table(
        "training_examples",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("item_id", sa.String(), nullable=True),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("category", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("corrected", sa.Boolean(), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_training_examples_item_id"), "training_examples", ["item_id"], unique=False)
    op.create_index(op.f("ix_training_examples_category"), "training_examples", ["category"], unique=False)
    op.create_index(op.f("ix_training_examples_source"), "training_examples", ["source"], unique=False)
    op.create_index(op.f("ix_training_examples_created_at"), "training_examples", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_training_examples_created_at"), table_name="training_examples")
    op.drop_index(op.f("ix_training_examples_source"), table_name="training_examples")
    op.drop_index(op.f("ix_training_examples_category"), table_name="training_examples")
    op.drop_index(op.f("ix_training_examples_item_id"), table_name="training_examples")
    op.drop_table("training_examples")

    op.drop_index("ix_performance_metrics_source_kind_recorded", table_name="performance_metrics")
    op.drop_index(op.f("ix_performance_metrics_recorded_at"), table_name="performance_metrics")
    op.drop_index(op.f("ix_performance_metrics_kind"), table_name="performance_metrics")
    op.drop_index(op.f("ix_performance_metrics_source"), table_name="performance_metrics")
    op.drop_table("performance_metrics")
