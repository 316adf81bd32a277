"""
PawMatch — Matches API

Endpoints for the matches screen feed (new matches + ongoing conversations)
and for the per-match lifecycle actions: start a chat, unmatch.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.errors import FetchError, NotFoundError, ValidationError
from app.schemas.match import (
    MatchFeedResponse,
    MatchProfile,
    MatchTarget,
    StartConversationResponse,
    UnmatchRequest,
    UnmatchResponse,
)
from app.services.lifecycle_service import MatchLifecycleService
from app.services.match_feed_service import MatchFeedService
from app.services.match_store import SqlConversationStore, SqlMatchStore

logger = structlog.get_logger("pawmatch.api.matching")

router = APIRouter()


# ── Service factories (overridable in tests) ──────────────────────────────────

def get_feed_service(db: AsyncSession = Depends(get_db)) -> MatchFeedService:
    return MatchFeedService(
        match_source=SqlMatchStore(db),
        conversation_source=SqlConversationStore(db),
    )


def get_lifecycle_service(db: AsyncSession = Depends(get_db)) -> MatchLifecycleService:
    return MatchLifecycleService(
        match_store=SqlMatchStore(db),
        conversation_store=SqlConversationStore(db),
    )


def _target_profile(target: MatchTarget) -> MatchProfile:
    # Lifecycle operations only need the identifiers; the placeholder photo
    # satisfies the never-empty photo list.
    return MatchProfile(
        id=target.dog_id,
        owner_id=target.owner_id,
        photos=(get_settings().PLACEHOLDER_PHOTO_URL,),
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id}/feed : New matches and conversations
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}/feed",
    response_model=MatchFeedResponse,
    summary="Get the matches screen feed for a user",
)
async def get_match_feed(
    user_id: uuid.UUID,
    new_limit: Optional[int] = Query(
        None, ge=0, le=50, description="Max new matches to return"
    ),
    service: MatchFeedService = Depends(get_feed_service),
) -> MatchFeedResponse:
    """Return new matches without a conversation and the user's
    conversations, newest message first.

    ``new_limit`` defaults to ``NEW_MATCHES_LIMIT``;
    ``unconversed_count`` always reports the uncapped total.
    """
    log = logger.bind(user_id=str(user_id))
    log.info("get_match_feed")

    settings = get_settings()
    limit = settings.NEW_MATCHES_LIMIT if new_limit is None else new_limit

    try:
        result = await asyncio.wait_for(
            service.load(str(user_id)),
            timeout=settings.FEED_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        log.warning("get_match_feed_timeout", timeout=settings.FEED_TIMEOUT_SECONDS)
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Loading matches timed out",
        ) from exc
    except ValidationError as exc:
        log.warning("get_match_feed_rejected", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except FetchError as exc:
        log.error("get_match_feed_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Could not load matches: {exc}",
        ) from exc

    return MatchFeedResponse(
        new_matches=result.new_matches(limit),
        unconversed_count=len(result.unconversed),
        conversations=result.conversations,
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}/conversations : Start (or reopen) a chat with a match
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/conversations",
    response_model=StartConversationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a conversation with a match",
)
async def start_conversation(
    user_id: uuid.UUID,
    payload: MatchTarget,
    service: MatchLifecycleService = Depends(get_lifecycle_service),
) -> StartConversationResponse:
    """Resolve the active match with the target dog's owner and return the
    conversation id to navigate to.  Existing conversations are reused."""
    log = logger.bind(user_id=str(user_id), dog_id=payload.dog_id)
    log.info("start_conversation_request")

    try:
        conversation_id = await service.start_conversation(
            str(user_id), _target_profile(payload)
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except FetchError as exc:
        log.error("start_conversation_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to start chat. Please try again.",
        ) from exc

    return StartConversationResponse(conversation_id=conversation_id)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}/unmatch : Deactivate a match
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/unmatch",
    response_model=UnmatchResponse,
    summary="Unmatch a dog",
)
async def unmatch(
    user_id: uuid.UUID,
    payload: UnmatchRequest,
    service: MatchLifecycleService = Depends(get_lifecycle_service),
) -> UnmatchResponse:
    """Deactivate the match with the target dog's owner.

    Irreversible; the request must carry ``confirm: true``.
    """
    log = logger.bind(user_id=str(user_id), dog_id=payload.dog_id)
    log.info("unmatch_request", confirmed=payload.confirm)

    try:
        match_id = await service.unmatch(
            str(user_id), _target_profile(payload), confirmed=payload.confirm
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except FetchError as exc:
        log.error("unmatch_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Unmatch failed. Please try again later.",
        ) from exc

    return UnmatchResponse(status="unmatched", match_id=match_id)
