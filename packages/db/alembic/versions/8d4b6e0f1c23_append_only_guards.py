# This project was developed with assistance from AI tools.
"""append-only triggers on audit_logs and status history

Revision ID: 8d4b6e0f1c23
Revises: 3f1a9c2e7b10
Create Date: 2026-09-14 11:40:03.118240

"""

from alembic import op

revision = "8d4b6e0f1c23"
down_revision = "3f1a9c2e7b10"
branch_labels = None
depends_on = None

GUARDED_TABLES = ("audit_logs", "loan_application_status_history")

TRIGGER_FUNCTION = """
CREATE OR REPLACE FUNCTION reject_append_only_mutation()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION '% is append-only: % denied', TG_TABLE_NAME, TG_OP;
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""

TRIGGER = """
CREATE TRIGGER {table}_append_only
    BEFORE UPDATE OR DELETE ON {table}
    FOR EACH ROW
    EXECUTE FUNCTION reject_append_only_mutation();
"""

# The portal role only exists in deployed databases; skip the REVOKE elsewhere.
REVOKE = """
DO $$
BEGIN
    IF EXISTS (SELECT 1 FROM pg_roles WHERE rolname = 'loanflow_app') THEN
        REVOKE UPDATE, DELETE ON {table} FROM loanflow_app;
    END IF;
END $$;
"""


def upgrade() -> None:
    op.execute(TRIGGER_FUNCTION)
    for table in GUARDED_TABLES:
        op.execute(TRIGGER.format(table=table))
        op.execute(REVOKE.format(table=table))


def downgrade() -> None:
    for table in GUARDED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_append_only ON {table}")
    op.execute("DROP FUNCTION IF EXISTS reject_append_only_mutation()")
