"""
scrims.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- positions       — Named ranks with an ordinal seniority level
- position_roles  — Per-guild bindings of a position to a Discord role
- user_positions  — A user's (possibly time-limited) holding of a position
- users           — Cached Discord profiles of known members

These models are the schema source for the row cache: every
:class:`~scrims.engine.row.TableRow` subclass derives its column list and
unique key from the matching model via ``TableSchema.from_model``.
Timestamps are stored as epoch seconds, matching the cache expiry clock.
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Scrims ORM models."""


# ---------------------------------------------------------------------------
# Positions: named ranks
# ---------------------------------------------------------------------------
class Position(Base):
    """A rank / permission tier.

    ``level`` orders positions by seniority: lower is more senior.  Positions
    without a level are not part of the hierarchy and never satisfy a
    ``position_level`` requirement.
    """
    __tablename__ = "positions"

    id_position: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    level: Mapped[int | None] = mapped_column(Integer, default=None)

    def __repr__(self) -> str:
        return f"<Position id={self.id_position} name={self.name!r} level={self.level}>"


# ---------------------------------------------------------------------------
# PositionRole: position ⇄ role binding inside one guild
# ---------------------------------------------------------------------------
class PositionRole(Base):
    __tablename__ = "position_roles"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    id_position: Mapped[int] = mapped_column(
        Integer, ForeignKey("positions.id_position", ondelete="CASCADE"), primary_key=True
    )
    role_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    __table_args__ = (
        Index("ix_position_roles_guild", "guild_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PositionRole guild={self.guild_id} "
            f"position={self.id_position} role={self.role_id}>"
        )


# ---------------------------------------------------------------------------
# UserPosition: the position ledger
# ---------------------------------------------------------------------------
class UserPosition(Base):
    """A user's holding of a position.

    ``expires_at`` of ``None`` means the holding is permanent.  Expired rows
    stay in the table as a record that the holding lapsed.
    """
    __tablename__ = "user_positions"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    id_position: Mapped[int] = mapped_column(
        Integer, ForeignKey("positions.id_position", ondelete="CASCADE"), primary_key=True
    )
    given_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int | None] = mapped_column(BigInteger, default=None)
    executor_id: Mapped[int | None] = mapped_column(BigInteger, default=None)

    __table_args__ = (
        Index("ix_user_positions_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<UserPosition user={self.user_id} position={self.id_position}>"


# ---------------------------------------------------------------------------
# Users: one row per known Discord user
# ---------------------------------------------------------------------------
class UserProfile(Base):
    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    discriminator: Mapped[int] = mapped_column(Integer, default=0)
    joined_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    accent_color: Mapped[int | None] = mapped_column(Integer, default=None)
    avatar: Mapped[str | None] = mapped_column(String(100), default=None)

    def __repr__(self) -> str:
        return f"<UserProfile id={self.user_id} name={self.username!r}>"
