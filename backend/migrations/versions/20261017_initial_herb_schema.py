"""Initial HerbTrace schema: users, sessions, batches, events, ledger receipts

Revision ID: 20261017_initial_herb_schema
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial_herb_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(50), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("organization", sa.String(100), nullable=False),
        sa.Column("extra_permissions", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sa.UniqueConstraint("email"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_user_id", ["user_id"], unique=True)
        batch_op.create_index("ix_users_role", ["role"], unique=False)

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_pk", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_reason", sa.String(255), nullable=True),
        sa.Column("user_agent", sa.String(255), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.ForeignKeyConstraint(["user_pk"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_session_tokens_user_pk", ["user_pk"], unique=False)
        batch_op.create_index("ix_session_tokens_token_hash", ["token_hash"], unique=True)

    op.create_table(
        "herb_batches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.String(50), nullable=False),
        sa.Column("species", sa.String(100), nullable=False),
        sa.Column("harvest_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("harvest_latitude", sa.Float(), nullable=False),
        sa.Column("harvest_longitude", sa.Float(), nullable=False),
        sa.Column("harvest_address", sa.String(255), nullable=False),
        sa.Column("harvest_zone", sa.String(64), nullable=True),
        sa.Column("farmer_id", sa.String(50), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="harvested"),
        sa.Column("quality_metrics", sa.JSON(), nullable=True),
        sa.Column("compliance_geo_fencing", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("compliance_seasonal", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("compliance_quality", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("compliance_species", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("compliance_overall", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("compliance_last_checked", sa.DateTime(timezone=True), nullable=True),
        sa.Column("compliance_violations", sa.JSON(), nullable=False),
        sa.Column("qr_code_generated", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("qr_code_hash", sa.Text(), nullable=True),
        sa.Column("qr_scan_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("qr_last_scanned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ledger_tx_id", sa.String(128), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["farmer_id"], ["users.user_id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("herb_batches", schema=None) as batch_op:
        batch_op.create_index("ix_herb_batches_batch_id", ["batch_id"], unique=True)
        batch_op.create_index("ix_herb_batches_farmer_id", ["farmer_id"], unique=False)
        batch_op.create_index("ix_herb_batches_harvest_date", ["harvest_date"], unique=False)
        batch_op.create_index("ix_herb_batches_species", ["species"], unique=False)
        batch_op.create_index("ix_herb_batches_status", ["status"], unique=False)
        batch_op.create_index("ix_herb_batches_location", ["harvest_latitude", "harvest_longitude"], unique=False)
        batch_op.create_index("ix_herb_batches_compliance_overall", ["compliance_overall"], unique=False)

    op.create_table(
        "batch_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(96), nullable=False),
        sa.Column("batch_pk", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("address", sa.String(255), nullable=False),
        sa.Column("actor_id", sa.String(50), nullable=False),
        sa.Column("actor_role", sa.String(32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("quality_data", sa.JSON(), nullable=True),
        sa.Column("certificates", sa.JSON(), nullable=True),
        sa.Column("compliance_passed", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("compliance_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("compliance_checked_by", sa.String(64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["batch_pk"], ["herb_batches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_pk", "sequence", name="uq_batch_events_batch_sequence"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("batch_events", schema=None) as batch_op:
        batch_op.create_index("ix_batch_events_event_id", ["event_id"], unique=True)
        batch_op.create_index("ix_batch_events_batch_pk", ["batch_pk"], unique=False)
        batch_op.create_index("ix_batch_events_type", ["event_type"], unique=False)
        batch_op.create_index("ix_batch_events_actor", ["actor_id"], unique=False)
        batch_op.create_index("ix_batch_events_timestamp", ["timestamp"], unique=False)

    op.create_table(
        "ledger_receipts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("batch_pk", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(96), nullable=True),
        sa.Column("operation", sa.String(32), nullable=False),
        sa.Column("transaction_id", sa.String(128), nullable=False),
        sa.Column("block_number", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("anchored_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["batch_pk"], ["herb_batches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("ledger_receipts", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_receipts_batch_pk", ["batch_pk"], unique=False)
        batch_op.create_index("ix_ledger_receipts_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_ledger_receipts_batch_operation", ["batch_pk", "operation"], unique=False)


def downgrade():
    with op.batch_alter_table("ledger_receipts", schema=None) as batch_op:
        batch_op.drop_index("ix_ledger_receipts_batch_operation")
        batch_op.drop_index("ix_ledger_receipts_transaction_id")
        batch_op.drop_index("ix_ledger_receipts_batch_pk")
    op.drop_table("ledger_receipts")

    with op.batch_alter_table("batch_events", schema=None) as batch_op:
        batch_op.drop_index("ix_batch_events_timestamp")
        batch_op.drop_index("ix_batch_events_actor")
        batch_op.drop_index("ix_batch_events_type")
        batch_op.drop_index("ix_batch_events_batch_pk")
        batch_op.drop_index("ix_batch_events_event_id")
    op.drop_table("batch_events")

    with op.batch_alter_table("herb_batches", schema=None) as batch_op:
        batch_op.drop_index("ix_herb_batches_compliance_overall")
        batch_op.drop_index("ix_herb_batches_location")
        batch_op.drop_index("ix_herb_batches_status")
        batch_op.drop_index("ix_herb_batches_species")
        batch_op.drop_index("ix_herb_batches_harvest_date")
        batch_op.drop_index("ix_herb_batches_farmer_id")
        batch_op.drop_index("ix_herb_batches_batch_id")
    op.drop_table("herb_batches")

    with op.batch_alter_table("session_tokens", schema=None) as batch_op:
        batch_op.drop_index("ix_session_tokens_token_hash")
        batch_op.drop_index("ix_session_tokens_user_pk")
    op.drop_table("session_tokens")

    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.drop_index("ix_users_role")
        batch_op.drop_index("ix_users_user_id")
    op.drop_table("users")
