"""
PawMatch — Match / Conversation Reconciliation Engine

Joins the normalized match list against the conversation list and splits
the matches into two views:

  * unconversed   : matches nobody has written to yet, in match order
  * conversations : (conversation, match) pairs, newest message first

``Conversation.match_id`` is written by a different part of the system and
may hold either the dog profile id or the owner id, so both keys are tried:
the dog id first, then the owner id.  Conversations that resolve to neither
are dropped and reported back in ``dropped_conversation_ids``.

The engine is pure.  Snapshots are passed in; nothing is read from ambient
state and no I/O is performed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

import structlog

from app.schemas.match import (
    Conversation,
    ConversationWithMatch,
    MatchProfile,
    ReconciledMatches,
)

logger = structlog.get_logger("pawmatch.reconciliation_service")

# Conversations without a message sort as if sent at the epoch.
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _recency_key(item: ConversationWithMatch) -> datetime:
    last = item.conversation.last_message
    if last is None:
        return _EPOCH
    ts = last.timestamp
    # Naive timestamps are taken to be UTC so they compare with aware ones.
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def find_match_for_conversation(
    conversation: Conversation,
    matches_by_id: dict[str, MatchProfile],
    matches_by_owner: dict[str, MatchProfile],
) -> MatchProfile | None:
    """Resolve a conversation to at most one match, dog id before owner id."""
    key = conversation.match_id
    if not key:
        return None
    return matches_by_id.get(key) or matches_by_owner.get(key)


def reconcile(
    matches: Sequence[MatchProfile],
    conversations: Sequence[Conversation],
) -> ReconciledMatches:
    """Partition ``matches`` by conversation and order both partitions.

    Parameters
    ----------
    matches:
        Normalized active matches, newest match first.
    conversations:
        Every conversation visible to the user, in store order.

    Returns
    -------
    ReconciledMatches
        ``unconversed`` keeps the input order of ``matches`` and is not
        capped; apply ``ReconciledMatches.new_matches(limit)`` for the
        highlight strip.  ``conversations`` is sorted by last message
        timestamp descending, message-less threads last, ties in join order.
    """
    # First occurrence wins on both indexes, mirroring a linear scan.
    matches_by_id: dict[str, MatchProfile] = {}
    matches_by_owner: dict[str, MatchProfile] = {}
    for match in matches:
        matches_by_id.setdefault(match.id, match)
        if match.owner_id:
            matches_by_owner.setdefault(match.owner_id, match)

    # ── Join ──────────────────────────────────────────────────────────
    joined: list[ConversationWithMatch] = []
    dropped: list[str] = []
    for conversation in conversations:
        match = find_match_for_conversation(conversation, matches_by_id, matches_by_owner)
        if match is None:
            dropped.append(conversation.id)
            logger.debug(
                "conversation_without_match",
                conversation_id=conversation.id,
                match_id=conversation.match_id,
            )
            continue
        joined.append(ConversationWithMatch(conversation=conversation, match=match))

    # ── Partition ─────────────────────────────────────────────────────
    referenced = {c.match_id for c in conversations if c.match_id}
    unconversed = [
        m for m in matches
        if m.id not in referenced and m.owner_id not in referenced
    ]

    # ── Order ─────────────────────────────────────────────────────────
    # ``sorted`` is stable, so equal timestamps keep their join order.
    ordered = sorted(joined, key=_recency_key, reverse=True)

    if dropped:
        logger.info("conversations_dropped", count=len(dropped))

    return ReconciledMatches(
        unconversed=unconversed,
        conversations=ordered,
        dropped_conversation_ids=dropped,
    )
