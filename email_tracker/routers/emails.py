"""Email record endpoints: thin handlers over the record store."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from email_tracker.broadcast import NEW_EMAIL_EVENT, BroadcastSink
from email_tracker.deps import get_broadcaster, get_store
from email_tracker.exceptions import BroadcastError
from email_tracker.models import DeleteResult, EmailCreate, EmailFilter, StoredEmail, TagsUpdate
from email_tracker.store import EmailStore

logger = structlog.get_logger()

router = APIRouter(prefix="/emails", tags=["emails"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")


@router.get("", response_model=list[StoredEmail])
async def list_emails(store: Annotated[EmailStore, Depends(get_store)]):
    return await store.find()


@router.post("", response_model=StoredEmail, status_code=status.HTTP_201_CREATED)
async def create_email(
    body: EmailCreate,
    store: Annotated[EmailStore, Depends(get_store)],
    sink: Annotated[BroadcastSink, Depends(get_broadcaster)],
):
    """Store an email and push it to connected clients."""
    stored = await store.insert(body)
    try:
        await sink.emit(NEW_EMAIL_EVENT, stored.to_payload())
    except BroadcastError as exc:
        logger.warning("email_broadcast_failed", email_id=stored.id, error=str(exc))
    return stored


@router.get("/search", response_model=list[StoredEmail])
async def search_emails(
    store: Annotated[EmailStore, Depends(get_store)],
    search_text: str = Query(default="", alias="searchText"),
):
    """Case-insensitive substring search over the body."""
    return await store.find(EmailFilter(body_contains=search_text or None))


@router.get("/filter", response_model=list[StoredEmail])
async def filter_emails(
    store: Annotated[EmailStore, Depends(get_store)],
    tag: str = Query(min_length=1),
):
    return await store.find(EmailFilter(tag=tag))


@router.get("/{email_id}", response_model=StoredEmail)
async def get_email(email_id: str, store: Annotated[EmailStore, Depends(get_store)]):
    stored = await store.get_by_id(email_id)
    if stored is None:
        raise _not_found()
    return stored


@router.post("/{email_id}/tags", response_model=StoredEmail)
async def add_tags(
    email_id: str,
    body: TagsUpdate,
    store: Annotated[EmailStore, Depends(get_store)],
):
    """Add tags with set semantics; repeating a tag is a no-op."""
    updated = await store.add_tags(email_id, body.tags)
    if updated is None:
        raise _not_found()
    return updated


@router.delete("/{email_id}", response_model=DeleteResult)
async def delete_email(email_id: str, store: Annotated[EmailStore, Depends(get_store)]):
    logger.info("email_delete_requested", email_id=email_id)
    removed = await store.delete_by_id(email_id)
    if removed is None:
        raise _not_found()
    return DeleteResult(message="Email deleted successfully")
