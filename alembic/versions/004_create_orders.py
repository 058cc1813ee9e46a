"""004: create orders table

Revision ID: 004
Revises: 003
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE orders (
            id                  VARCHAR(32)     PRIMARY KEY,
            payment_reference   VARCHAR(128)    NOT NULL,
            line_number         INT             NOT NULL DEFAULT 0,
            buyer_id            VARCHAR(64)     NOT NULL,
            buyer_email         VARCHAR(255),
            seller_id           VARCHAR(64)     NOT NULL,
            book_id             VARCHAR(64)     NOT NULL,
            book_title          VARCHAR(500)    NOT NULL,
            book_author         VARCHAR(255),
            book_price          BIGINT          NOT NULL,
            gross_amount        BIGINT          NOT NULL,
            delivery_fee        BIGINT          NOT NULL DEFAULT 0,
            total_amount        BIGINT          NOT NULL,
            seller_amount       BIGINT,
            platform_fee        BIGINT,
            status              VARCHAR(24)     NOT NULL DEFAULT 'pending_payment',
            paid_at             TIMESTAMPTZ,
            commit_deadline     TIMESTAMPTZ,
            committed_at        TIMESTAMPTZ,
            ready_at            TIMESTAMPTZ,
            collected_at        TIMESTAMPTZ,
            collected_by        VARCHAR(64),
            cancelled_at        TIMESTAMPTZ,
            cancelled_by        VARCHAR(64),
            cancel_reason       VARCHAR(500),
            refund_reference    VARCHAR(128),
            refund_requested_at TIMESTAMPTZ,
            refund_error        VARCHAR(500),
            refunded_at         TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_orders_payment_line       UNIQUE (payment_reference, line_number),
            CONSTRAINT ck_orders_line_number        CHECK (line_number >= 0),
            CONSTRAINT ck_orders_amounts_gte_0      CHECK (
                gross_amount >= 0 AND delivery_fee >= 0 AND book_price >= 0
            ),
            CONSTRAINT ck_orders_total              CHECK (total_amount = gross_amount + delivery_fee),
            CONSTRAINT ck_orders_split              CHECK (
                (seller_amount IS NULL AND platform_fee IS NULL) OR
                (seller_amount >= 0 AND platform_fee >= 0
                 AND seller_amount + platform_fee = gross_amount)
            ),
            CONSTRAINT ck_orders_deadline_when_paid CHECK (
                status = 'pending_payment' OR (paid_at IS NOT NULL AND commit_deadline IS NOT NULL)
            ),
            CONSTRAINT ck_orders_status             CHECK (
                status IN (
                    'pending_payment', 'paid', 'committed', 'ready_for_collection',
                    'collected', 'payout_processing', 'paid_out',
                    'declined', 'cancelled', 'refund_pending', 'refunded'
                )
            )
        );
    """)
    op.execute("CREATE INDEX idx_orders_payment_reference ON orders (payment_reference);")
    op.execute("CREATE INDEX idx_orders_buyer ON orders (buyer_id, id DESC);")
    op.execute("CREATE INDEX idx_orders_seller ON orders (seller_id, id DESC);")
    op.execute("""
        CREATE INDEX idx_orders_awaiting_commit
        ON orders (commit_deadline)
        WHERE status = 'paid';
    """)
    op.execute("""
        CREATE INDEX idx_orders_refund_followup
        ON orders (cancelled_at)
        WHERE status IN ('cancelled', 'declined', 'refund_pending');
    """)
    op.execute("CREATE INDEX idx_orders_refund_reference ON orders (refund_reference);")
    op.execute("""
        CREATE TRIGGER trg_orders_updated_at
            BEFORE UPDATE ON orders
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("""
        CREATE TRIGGER trg_orders_commit_deadline_guard
            BEFORE UPDATE OF commit_deadline ON orders
            FOR EACH ROW EXECUTE FUNCTION fn_guard_commit_deadline();
    """)
    op.execute(
        "COMMENT ON TABLE orders IS 'One row per sold book (cart line); "
        "status only changes through predicate-gated UPDATE ... RETURNING';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS orders CASCADE;")
