"""API routes for the audit trail."""

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pad.database import get_db
from pad.services import changelog

router = APIRouter(prefix="/changelog", tags=["changelog"])


class ChangeSource(BaseModel):
    type: str
    user_id: str | None


class ChangeLogResponse(BaseModel):
    id: uuid.UUID
    timestamp: datetime
    action: str
    collection: str
    document_id: str
    changes: list[dict[str, Any]]
    source: ChangeSource
    reason: str | None


@router.get("", response_model=list[ChangeLogResponse])
async def list_changelog(
    collection: str | None = Query(None),
    document_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Most recent audit entries first."""
    entries = await changelog.list_changes(
        collection=collection, document_id=document_id, limit=limit, session=db
    )
    return [
        ChangeLogResponse(
            id=entry.id,
            timestamp=entry.timestamp,
            action=entry.action,
            collection=entry.collection,
            document_id=entry.document_id,
            changes=entry.changes or [],
            source=ChangeSource(type=entry.source_type, user_id=entry.source_user),
            reason=entry.reason,
        )
        for entry in entries
    ]
