"""
PawMatch — Match Feed

Runs one full "snapshot, reconcile, replace" pass for a user:

  fetch active match rows -> normalize -> list conversations -> reconcile

``MatchFeed`` wraps the pass with a stale-result guard: each refresh is
tagged with a generation number and only the newest one may replace the
held snapshot.  Results that arrive after ``close()`` are discarded.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import structlog

from app.schemas.match import Conversation, MatchRow, ReconciledMatches
from app.services.normalizer_service import MatchNormalizer, ProfileSource
from app.services.reconciliation_service import reconcile

logger = structlog.get_logger("pawmatch.match_feed_service")


class MatchSource(ProfileSource, Protocol):
    async def fetch_active_matches(self, user_id: str) -> Sequence[MatchRow]: ...


class ConversationSource(Protocol):
    async def list_conversations(self, user_id: str) -> Sequence[Conversation]: ...


class MatchFeedService:
    """Loads and reconciles the matches screen for a user."""

    def __init__(
        self,
        match_source: MatchSource,
        conversation_source: ConversationSource,
        normalizer: MatchNormalizer | None = None,
    ) -> None:
        self.match_source = match_source
        self.conversation_source = conversation_source
        self.normalizer = normalizer or MatchNormalizer()

    async def load(self, user_id: str) -> ReconciledMatches:
        """Fetch fresh snapshots and reconcile them.

        Errors from any lookup propagate; no partial feed is built.
        """
        log = logger.bind(user_id=user_id)
        log.info("match_feed_load_start")

        rows = await self.match_source.fetch_active_matches(user_id)
        profiles = await self.normalizer.normalize(user_id, rows, self.match_source)
        conversations = await self.conversation_source.list_conversations(user_id)

        result = reconcile(profiles, conversations)

        if result.dropped_conversation_ids:
            log.warning(
                "match_feed_unmatched_conversations",
                conversation_ids=result.dropped_conversation_ids,
            )
        log.info(
            "match_feed_load_complete",
            unconversed=len(result.unconversed),
            conversations=len(result.conversations),
        )
        return result


class MatchFeed:
    """Holds the latest reconciled snapshot for one consumer."""

    def __init__(self, service: MatchFeedService, user_id: str) -> None:
        self.service = service
        self.user_id = user_id
        self.snapshot: ReconciledMatches | None = None
        self._generation = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def refresh(self) -> ReconciledMatches | None:
        """Reload the feed; returns ``None`` if the result went stale."""
        if self._closed:
            return None

        self._generation += 1
        generation = self._generation

        try:
            result = await self.service.load(self.user_id)
        except Exception:
            if self._is_stale(generation):
                self._log_discarded(generation, failed=True)
                return None
            raise

        if self._is_stale(generation):
            self._log_discarded(generation, failed=False)
            return None

        self.snapshot = result
        return result

    def close(self) -> None:
        """Tear the feed down; in-flight refreshes will be discarded."""
        self._closed = True

    def _is_stale(self, generation: int) -> bool:
        return self._closed or generation != self._generation

    def _log_discarded(self, generation: int, failed: bool) -> None:
        logger.info(
            "match_feed_stale_result_discarded",
            user_id=self.user_id,
            generation=generation,
            current_generation=self._generation,
            closed=self._closed,
            failed=failed,
        )
