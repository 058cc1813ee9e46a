"""BookAvailabilityRepository: the only catalog writes the settlement engine makes.

Both statements are idempotent and run inside the caller's transaction so the
book flag and the order status change commit together.
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

_MARK_SOLD_SQL = text("""
    UPDATE books
    SET sold = TRUE, available = FALSE
    WHERE id = :book_id AND (sold = FALSE OR available = TRUE)
""")

_RELIST_SQL = text("""
    UPDATE books
    SET sold = FALSE, available = TRUE
    WHERE id = :book_id AND (sold = TRUE OR available = FALSE)
""")


class BookAvailabilityRepository:
    async def mark_sold(self, book_id: str, db: AsyncSession) -> bool:
        """True if the row changed; False if already sold or unknown."""
        result = await db.execute(_MARK_SOLD_SQL, {"book_id": book_id})
        return result.rowcount > 0

    async def relist(self, book_id: str, db: AsyncSession) -> bool:
        result = await db.execute(_RELIST_SQL, {"book_id": book_id})
        return result.rowcount > 0
