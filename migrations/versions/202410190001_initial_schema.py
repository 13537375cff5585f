"""Initial schema: events with their capacity ledger and registrations."""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202410190001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_STATUS_CLAUSE = "status IN ('registered', 'waitlisted')"


def _timestamp_columns():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
            server_onupdate=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    event_category = sa.Enum(
        "workshops", "hackathons", "conferences", "networking", "study",
        name="event_category",
    )
    event_status = sa.Enum(
        "upcoming", "registration-open", "full", "completed", "cancelled",
        name="event_status",
    )
    registration_type = sa.Enum("user", "guest", name="registration_type")
    registration_status = sa.Enum(
        "registered", "waitlisted", "cancelled", "attended",
        name="registration_status",
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=True),
        sa.Column("duration_hours", sa.Float(), nullable=True),
        sa.Column("location", sa.String(length=200), nullable=True),
        sa.Column("category", event_category, nullable=True),
        sa.Column("featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.String(length=120), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_attendees", sa.Integer(), nullable=False),
        sa.Column("current_attendees", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", event_status, nullable=False, server_default="upcoming"),
        *_timestamp_columns(),
        sa.CheckConstraint("current_attendees >= 0", name="ck_events_attendees_non_negative"),
        sa.CheckConstraint("max_attendees >= 1", name="ck_events_max_attendees_positive"),
        sa.CheckConstraint(
            "current_attendees <= max_attendees",
            name="ck_events_attendees_within_capacity",
        ),
    )
    op.create_index("ix_events_status_active", "events", ["status", "is_active"])

    op.create_table(
        "event_registrations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("registration_type", registration_type, nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=True),
        sa.Column("guest_name", sa.String(length=100), nullable=True),
        sa.Column("guest_email", sa.String(length=255), nullable=True),
        sa.Column("guest_phone", sa.String(length=40), nullable=True),
        sa.Column("guest_company", sa.String(length=100), nullable=True),
        sa.Column("guest_notes", sa.Text(), nullable=True),
        sa.Column("identity_key", sa.String(length=300), nullable=False),
        sa.Column("status", registration_status, nullable=False),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
    )
    op.create_index(
        "uq_event_registrations_active_identity",
        "event_registrations",
        ["event_id", "identity_key"],
        unique=True,
        sqlite_where=sa.text(ACTIVE_STATUS_CLAUSE),
        postgresql_where=sa.text(ACTIVE_STATUS_CLAUSE),
    )
    op.create_index(
        "ix_event_registrations_event_status",
        "event_registrations",
        ["event_id", "status"],
    )
    op.create_index(
        "ix_event_registrations_fifo",
        "event_registrations",
        ["event_id", "status", "registered_at", "id"],
    )
    op.create_index("ix_event_registrations_guest_email", "event_registrations", ["guest_email"])
    op.create_index("ix_event_registrations_user_id", "event_registrations", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_event_registrations_user_id", table_name="event_registrations")
    op.drop_index("ix_event_registrations_guest_email", table_name="event_registrations")
    op.drop_index("ix_event_registrations_fifo", table_name="event_registrations")
    op.drop_index("ix_event_registrations_event_status", table_name="event_registrations")
    op.drop_index("uq_event_registrations_active_identity", table_name="event_registrations")
    op.drop_table("event_registrations")
    op.drop_index("ix_events_status_active", table_name="events")
    op.drop_table("events")

    bind = op.get_bind()
    for name in ("registration_status", "registration_type", "event_status", "event_category"):
        sa.Enum(name=name).drop(bind, checkfirst=True)
