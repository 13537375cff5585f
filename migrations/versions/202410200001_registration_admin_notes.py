"""Staff-only notes on registrations."""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202410200001"
down_revision = "202410190001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("event_registrations") as batch_op:
        batch_op.add_column(sa.Column("admin_notes", sa.Text(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("event_registrations") as batch_op:
        batch_op.drop_column("admin_notes")
