"""init roster schema

Revision ID: 0001_init_roster
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg


# revision identifiers, used by Alembic.
revision = "0001_init_roster"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # users
    op.create_table(
        "users",
        sa.Column("id", pg.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("photo_url", sa.Text(), nullable=True),
        sa.Column("profile", sa.JSON(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_unique_constraint("uq_users_email", "users", ["email"])

    # activities
    op.create_table(
        "activities",
        sa.Column("id", pg.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("starts_at", pg.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("unit_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'scheduled'")),
        sa.Column("confirmed_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("waitlist_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_activities"),
        sa.CheckConstraint("capacity >= 0", name="ck_activities_activities_capacity_nonneg"),
        sa.CheckConstraint("unit_type in ('players','teams')", name="ck_activities_activities_unit_type"),
        sa.CheckConstraint("status in ('scheduled','closed','canceled')", name="ck_activities_activities_status"),
        sa.CheckConstraint(
            "confirmed_count >= 0 AND waitlist_count >= 0", name="ck_activities_activities_counts_nonneg"
        ),
    )
    op.create_index("ix_activities_starts_at", "activities", ["starts_at"], unique=False)

    # teams
    op.create_table(
        "teams",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("activity_id", pg.UUID(as_uuid=True), sa.ForeignKey("activities.id"), nullable=False),
        sa.Column("player1_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("player2_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("confirmed_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_teams"),
        sa.CheckConstraint("status in ('pending','confirmed')", name="ck_teams_teams_status"),
        sa.CheckConstraint("player1_id <> player2_id", name="ck_teams_teams_distinct_players"),
    )
    op.create_index("ix_teams_activity_status", "teams", ["activity_id", "status"], unique=False)
    op.create_index("ix_teams_player1", "teams", ["player1_id"], unique=False)
    op.create_index("ix_teams_player2", "teams", ["player2_id"], unique=False)

    # registrants
    op.create_table(
        "registrants",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("activity_id", pg.UUID(as_uuid=True), sa.ForeignKey("activities.id"), nullable=False),
        sa.Column("user_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("waitlist_pos", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.BigInteger(), sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True),
        sa.Column("looking_for_partner", sa.Boolean(), nullable=False),
        sa.Column("partner_status", sa.Text(), nullable=False, server_default=sa.text("'none'")),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        sa.Column("registered_at", pg.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("waitlisted_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("promoted_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_registrants"),
        sa.CheckConstraint("status in ('confirmed','waitlist','cancelled')", name="ck_registrants_registrants_status"),
        sa.CheckConstraint(
            "partner_status in ('none','pending','confirmed','denied')",
            name="ck_registrants_registrants_partner_status",
        ),
    )
    # one active registration per user and activity; cancelled rows may pile up
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_registrant_active_once
        ON registrants (activity_id, user_id)
        WHERE status <> 'cancelled'
    """)
    op.create_index(
        "ix_registrants_activity_status_pos", "registrants", ["activity_id", "status", "waitlist_pos"], unique=False
    )
    op.create_index("ix_registrants_team", "registrants", ["team_id"], unique=False)

    # notifications (log + outbox)
    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("recipient_id", pg.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("dedupe_key", sa.Text(), nullable=False),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("sent_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
        sa.UniqueConstraint("dedupe_key", name="uq_notifications_dedupe_key"),
    )
    op.create_index("ix_notifications_recipient_read", "notifications", ["recipient_id", "read"], unique=False)
    op.create_index("ix_notifications_unsent", "notifications", ["sent_at", "id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_notifications_unsent", table_name="notifications")
    op.drop_index("ix_notifications_recipient_read", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_registrants_team", table_name="registrants")
    op.drop_index("ix_registrants_activity_status_pos", table_name="registrants")
    op.execute("DROP INDEX IF EXISTS uq_registrant_active_once")
    op.drop_table("registrants")
    op.drop_index("ix_teams_player2", table_name="teams")
    op.drop_index("ix_teams_player1", table_name="teams")
    op.drop_index("ix_teams_activity_status", table_name="teams")
    op.drop_table("teams")
    op.drop_index("ix_activities_starts_at", table_name="activities")
    op.drop_table("activities")
    op.drop_table("users")
