"""
PawMatch — Match Lifecycle Service

State transitions a user can apply to one of their matches:

  * start_conversation: resolve the active match row and open (or reuse)
    its conversation
  * unmatch: logically delete the active match row

Both operations surface failures to the caller; nothing is retried here.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import structlog

from app.errors import NotFoundError, ValidationError
from app.schemas.match import MatchProfile, MatchRow

logger = structlog.get_logger("pawmatch.lifecycle_service")


class MatchRowStore(Protocol):
    async def find_active_match_rows(
        self, actor_id: str, counterpart_id: str
    ) -> Sequence[MatchRow]: ...

    async def deactivate_match(self, match_row_id: str) -> None: ...


class ConversationCreator(Protocol):
    async def create_conversation(self, match_id: str) -> str: ...


class MatchLifecycleService:
    """Start-chat and unmatch operations on a single match.

    Collaborators are injected so the service can run against the SQL
    stores in production and against mocks in tests.
    """

    def __init__(
        self,
        match_store: MatchRowStore,
        conversation_store: ConversationCreator,
    ) -> None:
        self.match_store = match_store
        self.conversation_store = conversation_store

    async def start_conversation(self, actor_id: str, profile: MatchProfile) -> str:
        """Open the conversation for ``profile`` and return its id.

        The match relation row is resolved fresh on every call, newest
        ``matched_at`` first, so a concurrent unmatch is detected here
        rather than producing a conversation on a dissolved match.
        Calling this twice for the same active match returns the same id.

        Raises
        ------
        ValidationError
            ``actor_id`` or ``profile.owner_id`` is missing.
        NotFoundError
            No active match links the actor and the profile's owner.
        """
        self._require_ids(actor_id, profile)
        log = logger.bind(actor_id=actor_id, dog_id=profile.id, owner_id=profile.owner_id)
        log.info("start_conversation_begin")

        match_row = await self._resolve_active_match(actor_id, profile)
        if match_row is None:
            log.warning("start_conversation_no_active_match")
            raise NotFoundError("No active match found. Please try again.")

        conversation_id = await self.conversation_store.create_conversation(match_row.id)

        log.info(
            "start_conversation_complete",
            match_id=match_row.id,
            conversation_id=conversation_id,
        )
        return conversation_id

    async def unmatch(
        self,
        actor_id: str,
        profile: MatchProfile,
        confirmed: bool = False,
    ) -> str:
        """Deactivate the match with ``profile`` and return the match row id.

        This cannot be undone, so ``confirmed`` must be passed explicitly.
        Conversation rows are kept; they disappear from the feed because
        the reconciliation only sees active matches.
        """
        self._require_ids(actor_id, profile)
        if not confirmed:
            raise ValidationError("Unmatching must be confirmed by the user.")

        log = logger.bind(actor_id=actor_id, dog_id=profile.id, owner_id=profile.owner_id)
        log.info("unmatch_begin")

        match_row = await self._resolve_active_match(actor_id, profile)
        if match_row is None:
            log.warning("unmatch_match_not_found")
            raise NotFoundError("Match not found")

        await self.match_store.deactivate_match(match_row.id)

        log.info("unmatch_complete", match_id=match_row.id)
        return match_row.id

    # ── Private helpers ──────────────────────────────────────────────────

    async def _resolve_active_match(
        self,
        actor_id: str,
        profile: MatchProfile,
    ) -> MatchRow | None:
        rows = await self.match_store.find_active_match_rows(actor_id, profile.owner_id)
        return rows[0] if rows else None

    @staticmethod
    def _require_ids(actor_id: str, profile: MatchProfile) -> None:
        if not actor_id:
            raise ValidationError("An authenticated user is required.")
        if not profile.owner_id:
            raise ValidationError(f"Match {profile.id} has no owner id.")
