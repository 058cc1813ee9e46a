"""002: create books table (catalog-owned; only availability flags written here)

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS books (
            id              VARCHAR(64)     PRIMARY KEY,
            seller_id       VARCHAR(64)     NOT NULL,
            title           VARCHAR(500)    NOT NULL,
            author          VARCHAR(255),
            price           BIGINT          NOT NULL,
            sold            BOOLEAN         NOT NULL DEFAULT FALSE,
            available       BOOLEAN         NOT NULL DEFAULT TRUE,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_books_price_gte_0 CHECK (price >= 0)
        );
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_books_seller ON books (seller_id);")
    op.execute("""
        CREATE TRIGGER trg_books_updated_at
            BEFORE UPDATE ON books
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS books CASCADE;")
