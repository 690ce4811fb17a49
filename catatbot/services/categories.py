"""
Category directory backed by the `categories` table.

Users pick a category by its number in the listed menu, by its exact name,
or by any unambiguous part of its name ("office" → "Office Supplies").
"""

import logging
from typing import Optional

import asyncpg

from catatbot.database.models import CategoryRef, TransactionType

logger = logging.getLogger(__name__)


def match_category(text: str, categories: list[CategoryRef]) -> Optional[CategoryRef]:
    """Resolve user input against an ordered category list.

    Returns None when nothing matches or when a partial name matches more
    than one category.
    """
    selection = (text or "").strip().lower()
    if not selection:
        return None

    if selection.isdigit():
        index = int(selection) - 1
        if 0 <= index < len(categories):
            return categories[index]
        return None

    for category in categories:
        if category.name.lower() == selection:
            return category

    partial = [c for c in categories if selection in c.name.lower()]
    if len(partial) == 1:
        return partial[0]
    if len(partial) > 1:
        logger.info("Ambiguous category input %r matches %d categories", text, len(partial))
    return None


class PostgresCategoryDirectory:
    """Active categories per transaction type, in menu order."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def list_active(self, tx_type: TransactionType) -> list[CategoryRef]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT id, name, type, sort_order FROM categories "
                "WHERE type = $1 AND is_active = TRUE "
                "ORDER BY sort_order, name",
                tx_type.value,
            )
        return [
            CategoryRef(
                id=row["id"],
                name=row["name"],
                type=TransactionType(row["type"]),
                sort_order=row["sort_order"],
            )
            for row in rows
        ]

    async def resolve(self, text: str, tx_type: TransactionType) -> Optional[CategoryRef]:
        return match_category(text, await self.list_active(tx_type))
