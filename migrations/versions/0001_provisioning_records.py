"""Provisioning records — last resolved lock state per resource.

Revision ID: 0001
Revises:     (none)
Create Date: 2026-10-18
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # ------------------------------------------------------------------ #
    # provisioning_records                                                #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE provisioning_records (
            id                     UUID          NOT NULL DEFAULT gen_random_uuid(),
            backend                VARCHAR(20)   NOT NULL,   -- aws | azure
            resource_name          VARCHAR(63)   NOT NULL,
            lock_enabled           BOOLEAN       NOT NULL,
            lock_mode              VARCHAR(20)   NOT NULL,
            retention_days         INTEGER       NOT NULL,
            immutability_verified  BOOLEAN       NOT NULL,
            outputs                JSONB         NOT NULL,
            graph                  JSONB         NOT NULL,
            created_at             TIMESTAMP     NOT NULL DEFAULT NOW(),
            updated_at             TIMESTAMP     NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_provisioning_records PRIMARY KEY (id),
            CONSTRAINT uq_provisioning_records_resource UNIQUE (backend, resource_name),
            CONSTRAINT chk_provisioning_records_backend
                CHECK (backend IN ('aws', 'azure')),
            CONSTRAINT chk_provisioning_records_lock_mode
                CHECK (lock_mode IN ('GOVERNANCE', 'COMPLIANCE')),
            CONSTRAINT chk_provisioning_records_retention
                CHECK (retention_days >= 0 AND (NOT lock_enabled OR retention_days >= 365))
        )
    """)

    # ------------------------------------------------------------------ #
    # updated_at auto-refresh                                              #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER trg_provisioning_records_updated_at
        BEFORE UPDATE ON provisioning_records
        FOR EACH ROW EXECUTE FUNCTION update_updated_at_column()
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_provisioning_records_updated_at ON provisioning_records")
    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column")
    op.execute("DROP TABLE IF EXISTS provisioning_records CASCADE")
