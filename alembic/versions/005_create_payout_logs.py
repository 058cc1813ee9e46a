"""005: create payout_logs table

Revision ID: 005
Revises: 004
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE payout_logs (
            id                  BIGSERIAL       PRIMARY KEY,
            order_id            VARCHAR(32)     NOT NULL REFERENCES orders (id),
            seller_id           VARCHAR(64)     NOT NULL,
            amount              BIGINT          NOT NULL,
            platform_fee        BIGINT          NOT NULL,
            recipient_code      VARCHAR(64)     NOT NULL,
            reference           VARCHAR(128)    NOT NULL,
            transfer_code       VARCHAR(64),
            status              VARCHAR(12)     NOT NULL DEFAULT 'pending',
            gateway_response    JSONB           NOT NULL DEFAULT '{}',
            failure_reason      VARCHAR(500),
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_payout_logs_reference     UNIQUE (reference),
            CONSTRAINT ck_payout_logs_amounts       CHECK (amount >= 0 AND platform_fee >= 0),
            CONSTRAINT ck_payout_logs_status        CHECK (
                status IN ('pending', 'processing', 'success', 'failed')
            )
        );
    """)
    # The payout claim: at most one live payout per order.
    op.execute("""
        CREATE UNIQUE INDEX uq_payout_logs_active_order
        ON payout_logs (order_id)
        WHERE status IN ('pending', 'processing', 'success');
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_payout_logs_success_order
        ON payout_logs (order_id)
        WHERE status = 'success';
    """)
    op.execute("CREATE INDEX idx_payout_logs_order ON payout_logs (order_id, id DESC);")
    op.execute("""
        CREATE TRIGGER trg_payout_logs_updated_at
            BEFORE UPDATE ON payout_logs
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payout_logs CASCADE;")
