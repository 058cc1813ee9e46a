"""003: create banking_subaccounts table

Revision ID: 003
Revises: 002
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE banking_subaccounts (
            user_id             VARCHAR(64)     PRIMARY KEY,
            recipient_code      VARCHAR(64),
            subaccount_code     VARCHAR(64),
            bank_name           VARCHAR(128),
            account_last4       VARCHAR(4),
            metadata            JSONB           NOT NULL DEFAULT '{}',
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_banking_subaccounts_updated_at
            BEFORE UPDATE ON banking_subaccounts
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS banking_subaccounts CASCADE;")
