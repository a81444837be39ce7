"""002 – Sandwich-leave engine fields and manual balance adjustment log.

Adds the ledger-owned columns on leave_applications (deducted_days,
is_sandwich, sandwich_reason) and the append-only
leave_balance_adjustments table.

Uses ADD COLUMN IF NOT EXISTS / CREATE TABLE IF NOT EXISTS so the migration
is safe to re-run against a partially patched database.

Revision ID: 002_sandwich_leave_ledger
Revises: 001_initial_schema
Create Date: 2025-09-16 12:00:00.000000+05:30
"""

from alembic import op

# Revision identifiers
revision = "002_sandwich_leave_ledger"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ══════════════════════════════════════════════════════════════════
    # leave_applications: engine-owned pricing fields
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        ALTER TABLE leave_applications
            ADD COLUMN IF NOT EXISTS deducted_days NUMERIC(5,1),
            ADD COLUMN IF NOT EXISTS is_sandwich BOOLEAN DEFAULT FALSE,
            ADD COLUMN IF NOT EXISTS sandwich_reason TEXT
    """)
    # Pair lookup: single-day applications by employee and date
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leave_app_single_day
            ON leave_applications (employee_id, start_date)
            WHERE start_date = end_date AND status = 'approved'
    """)

    # ══════════════════════════════════════════════════════════════════
    # leave_balance_adjustments: HR allocation changes
    # ══════════════════════════════════════════════════════════════════
    op.execute("""
        DO $$ BEGIN
            IF NOT EXISTS (
                SELECT 1 FROM pg_type WHERE typname = 'adjustment_direction'
            ) THEN
                CREATE TYPE adjustment_direction AS ENUM ('add', 'subtract');
            END IF;
        END $$
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS leave_balance_adjustments (
            id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            employee_id        UUID NOT NULL REFERENCES employees(id),
            leave_balance_id   UUID NOT NULL REFERENCES leave_balances(id),
            direction          adjustment_direction NOT NULL,
            amount             NUMERIC(5,1) NOT NULL,
            reason             TEXT NOT NULL,
            previous_allocated NUMERIC(5,1) NOT NULL,
            new_allocated      NUMERIC(5,1) NOT NULL,
            adjusted_by        UUID REFERENCES employees(id),
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_adjustment_amount CHECK (amount > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leave_adjustment_employee
            ON leave_balance_adjustments (employee_id, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leave_balance_adjustments CASCADE")
    op.execute("DROP TYPE IF EXISTS adjustment_direction")
    op.execute("DROP INDEX IF EXISTS ix_leave_app_single_day")
    op.execute("""
        ALTER TABLE leave_applications
            DROP COLUMN IF EXISTS sandwich_reason,
            DROP COLUMN IF EXISTS is_sandwich,
            DROP COLUMN IF EXISTS deducted_days
    """)
