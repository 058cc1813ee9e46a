"""Append-only audit trail of verified webhook deliveries."""
import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

_INSERT_WEBHOOK_EVENT_SQL = text("""
    INSERT INTO webhook_events (event_type, reference, payload)
    VALUES (:event_type, :reference, CAST(:payload AS JSONB))
""")


async def record_webhook_event(
    db: AsyncSession,
    event_type: str,
    reference: str | None,
    payload: dict[str, Any],
) -> None:
    """Insert one audit row within the caller's transaction."""
    await db.execute(
        _INSERT_WEBHOOK_EVENT_SQL,
        {
            "event_type": event_type,
            "reference": reference,
            "payload": json.dumps(payload),
        },
    )
