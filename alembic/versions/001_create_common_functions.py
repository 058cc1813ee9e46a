"""001: create common functions

Revision ID: 001
Revises:
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_update_timestamp()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    # commit_deadline is written once, by the payment confirmation, and never again.
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_guard_commit_deadline()
        RETURNS TRIGGER AS $$
        BEGIN
            IF OLD.commit_deadline IS NOT NULL
               AND NEW.commit_deadline IS DISTINCT FROM OLD.commit_deadline THEN
                RAISE EXCEPTION 'commit_deadline is immutable once set (order %)', OLD.id
                    USING ERRCODE = 'check_violation';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)


def downgrade() -> None:
    op.execute("DROP FUNCTION IF EXISTS fn_guard_commit_deadline();")
    op.execute("DROP FUNCTION IF EXISTS fn_update_timestamp();")
