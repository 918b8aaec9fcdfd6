"""Create positions, position_roles, user_positions and users tables

Revision ID: 5c2e8a1f0b7d
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "5c2e8a1f0b7d"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "positions",
        sa.Column("id_position", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("level", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id_position"),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "position_roles",
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("id_position", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(["id_position"], ["positions.id_position"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("guild_id", "id_position", "role_id"),
    )
    op.create_index("ix_position_roles_guild", "position_roles", ["guild_id"])
    op.create_table(
        "user_positions",
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("id_position", sa.Integer(), nullable=False),
        sa.Column("given_at", sa.BigInteger(), nullable=False),
        sa.Column("expires_at", sa.BigInteger(), nullable=True),
        sa.Column("executor_id", sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(["id_position"], ["positions.id_position"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "id_position"),
    )
    op.create_index("ix_user_positions_user", "user_positions", ["user_id"])
    op.create_table(
        "users",
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("discriminator", sa.Integer(), nullable=True),
        sa.Column("joined_at", sa.BigInteger(), nullable=False),
        sa.Column("accent_color", sa.Integer(), nullable=True),
        sa.Column("avatar", sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # Seed the position the ban lists stand in for
    op.execute("INSERT INTO positions (name, level) VALUES ('banned', NULL)")


def downgrade() -> None:
    op.drop_table("users")
    op.drop_index("ix_user_positions_user", table_name="user_positions")
    op.drop_table("user_positions")
    op.drop_index("ix_position_roles_guild", table_name="position_roles")
    op.drop_table("position_roles")
    op.drop_table("positions")
