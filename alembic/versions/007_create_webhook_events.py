"""007: create webhook_events table

Revision ID: 007
Revises: 006
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "007"
down_revision: Union[str, None] = "006"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE webhook_events (
            id              BIGSERIAL       PRIMARY KEY,
            event_type      VARCHAR(64)     NOT NULL,
            reference       VARCHAR(128),
            payload         JSONB           NOT NULL,
            received_at     TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX idx_webhook_events_reference ON webhook_events (reference);")
    op.execute(
        "COMMENT ON TABLE webhook_events IS "
        "'Verified gateway deliveries, append-only, for reconciliation and audit';"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS webhook_events CASCADE;")
