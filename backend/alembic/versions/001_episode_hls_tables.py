"""Episode and encoding job tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates episodes and encoding_jobs.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "episodes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("movie_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("is_processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("playlist_url", sa.String(1024), nullable=True),
        sa.Column("thumbnail_url", sa.String(1024), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_episodes_movie_id"), "episodes", ["movie_id"], unique=False)

    op.create_table(
        "encoding_jobs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("movie_id", sa.Integer(), nullable=False),
        sa.Column("episode_id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(1024), nullable=False),
        sa.Column("callback_url", sa.String(1024), nullable=True),
        sa.Column("state", sa.String(20), nullable=False, server_default="started"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("worker_hostname", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_encoding_jobs_episode_id"), "encoding_jobs", ["episode_id"], unique=False)
    op.create_index(op.f("ix_encoding_jobs_state"), "encoding_jobs", ["state"], unique=False)
    op.create_index(
        "ix_encoding_jobs_episode_state",
        "encoding_jobs",
        ["episode_id", "state"],
        unique=False,
    )
    op.create_index(
        "uq_encoding_jobs_active_episode",
        "encoding_jobs",
        ["episode_id"],
        unique=True,
        postgresql_where=sa.text("state NOT IN ('done', 'failed')"),
    )


def downgrade() -> None:
    op.drop_index("uq_encoding_jobs_active_episode", table_name="encoding_jobs")
    op.drop_index("ix_encoding_jobs_episode_state", table_name="encoding_jobs")
    op.drop_index(op.f("ix_encoding_jobs_state"), table_name="encoding_jobs")
    op.drop_index(op.f("ix_encoding_jobs_episode_id"), table_name="encoding_jobs")
    op.drop_table("encoding_jobs")

    op.drop_index(op.f("ix_episodes_movie_id"), table_name="episodes")
    op.drop_table("episodes")
