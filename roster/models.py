from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# BIGINT autoincrement on PostgreSQL, rowid alias on SQLite
BigIntPK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


# ---------- Base & naming ----------
class Base(DeclarativeBase):
    # Keep index/constraint names stable for cleaner migrations
    metadata = sa.MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


# ---------- USERS (identity provider projection) ----------
class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True, unique=True)

    # canonical profile pair, see domain.profile.normalize_profile
    name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    photo_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    # raw claims as the identity provider sent them
    profile: Mapped[dict] = mapped_column(sa.JSON, nullable=False, default=dict)

    is_admin: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


# ---------- ACTIVITIES ----------
class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    starts_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)

    capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    unit_type: Mapped[str] = mapped_column(sa.Text, nullable=False, default="players")  # 'players' | 'teams'

    status: Mapped[str] = mapped_column(
        sa.Text,
        nullable=False,
        default="scheduled",
        server_default=sa.text("'scheduled'"),
    )  # 'scheduled' | 'closed' | 'canceled'

    # Capacity ledger. Only services.ledger mutates these.
    confirmed_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default=sa.text("0"))
    waitlist_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default=sa.text("0"))
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="activities_capacity_nonneg"),
        CheckConstraint("unit_type in ('players','teams')", name="activities_unit_type"),
        CheckConstraint("status in ('scheduled','closed','canceled')", name="activities_status"),
        CheckConstraint("confirmed_count >= 0 AND waitlist_count >= 0", name="activities_counts_nonneg"),
        Index("ix_activities_starts_at", "starts_at"),
    )


# ---------- TEAMS ----------
class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    activity_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("activities.id"), nullable=False)

    # inviter always starts in slot 1
    player1_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("users.id"), nullable=False)
    player2_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("users.id"), nullable=False)

    status: Mapped[str] = mapped_column(
        sa.Text,
        nullable=False,
        default="pending",
        server_default=sa.text("'pending'"),
    )  # 'pending' | 'confirmed'

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status in ('pending','confirmed')", name="teams_status"),
        CheckConstraint("player1_id <> player2_id", name="teams_distinct_players"),
        Index("ix_teams_activity_status", "activity_id", "status"),
        Index("ix_teams_player1", "player1_id"),
        Index("ix_teams_player2", "player2_id"),
        # never reuse a deleted team id; notification dedupe keys embed it
        {"sqlite_autoincrement": True},
    )


# ---------- REGISTRANTS ----------
class Registrant(Base):
    __tablename__ = "registrants"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    activity_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("activities.id"), nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("users.id"), nullable=False)

    status: Mapped[str] = mapped_column(sa.Text, nullable=False)  # 'confirmed' | 'waitlist' | 'cancelled'
    waitlist_pos: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)

    # teams activities only; set while partnered in a CONFIRMED team
    team_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("teams.id", ondelete="SET NULL"), nullable=True
    )
    looking_for_partner: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    partner_status: Mapped[str] = mapped_column(
        sa.Text, nullable=False, default="none", server_default=sa.text("'none'")
    )  # 'none' | 'pending' | 'confirmed' | 'denied'
    # holds the activity's unit (solo player, or slot 1 of a confirmed team)
    is_primary: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    registered_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    waitlisted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    promoted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status in ('confirmed','waitlist','cancelled')", name="registrants_status"),
        CheckConstraint("partner_status in ('none','pending','confirmed','denied')", name="registrants_partner_status"),
        # Partial unique index to allow re-register after cancel
        Index(
            "uq_registrant_active_once",
            "activity_id",
            "user_id",
            unique=True,
            postgresql_where=sa.text("status <> 'cancelled'"),
            sqlite_where=sa.text("status <> 'cancelled'"),
        ),
        Index("ix_registrants_activity_status_pos", "activity_id", "status", "waitlist_pos"),
        Index("ix_registrants_team", "team_id"),
    )


# ---------- NOTIFICATIONS (log + outbox) ----------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    recipient_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(sa.Text, nullable=False)
    payload: Mapped[dict] = mapped_column(sa.JSON, nullable=False)
    read: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False, server_default=sa.false())

    # one row per transition per recipient, even if the transition is replayed
    dedupe_key: Mapped[str] = mapped_column(sa.Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )

    # dispatch bookkeeping (workers.outbox_dispatcher)
    sent_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0, server_default=sa.text("0"))
    error: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_notifications_dedupe_key"),
        Index("ix_notifications_recipient_read", "recipient_id", "read"),
        Index("ix_notifications_unsent", "sent_at", "id"),
        {"sqlite_autoincrement": True},
    )
