"""Audit trail helpers.

Entries are added to the caller's session and committed together with the
change they describe, so a rolled-back transition leaves no audit row.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pad.database import async_session
from pad.models import ChangeLog

logger = logging.getLogger(__name__)

DISCOVERED_VENUES = "discovered_venues"
VENUES = "venues"
DISHES = "dishes"


def diff_fields(before: dict, after: dict) -> list[dict]:
    """Return ``[{field, before, after}]`` for keys whose value changed."""
    changes = []
    for field in after:
        if before.get(field) != after[field]:
            changes.append({"field": field, "before": before.get(field), "after": after[field]})
    return changes


def record_change(
    session: AsyncSession,
    *,
    action: str,
    collection: str,
    document_id,
    changes: list[dict],
    reason: str | None = None,
    user: str | None = None,
) -> ChangeLog:
    entry = ChangeLog(
        action=action,
        collection=collection,
        document_id=str(document_id),
        changes=changes,
        source_type="reviewer" if user else "system",
        source_user=user,
        reason=reason,
    )
    session.add(entry)
    logger.debug("%s %s/%s: %s", action, collection, document_id, reason)
    return entry


async def list_changes(
    *,
    collection: str | None = None,
    document_id: str | None = None,
    limit: int = 100,
    session: AsyncSession | None = None,
) -> list[ChangeLog]:
    close_session = False
    if session is None:
        session = async_session()
        close_session = True

    try:
        stmt = select(ChangeLog)
        if collection:
            stmt = stmt.where(ChangeLog.collection == collection)
        if document_id:
            stmt = stmt.where(ChangeLog.document_id == document_id)
        stmt = stmt.order_by(ChangeLog.timestamp.desc(), ChangeLog.id).limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())
    finally:
        if close_session:
            await session.close()
