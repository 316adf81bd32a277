"""
PawMatch — Match, profile and conversation schemas.

These are the in-process shapes the normalizer, reconciliation engine and
lifecycle service pass between each other, plus the request/response bodies
of the matches API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Raw, backend-shaped records ───────────────────────────────────────────────

class MatchRow(BaseModel):
    """A symmetric "these two users are matched" fact."""

    id: str
    user1_id: str
    user2_id: str
    matched_at: Optional[datetime] = None
    is_active: bool = True


class DogProfileRecord(BaseModel):
    """A primary dog profile row as returned by the dog-profile source."""

    id: str
    owner_id: str
    name: str = ""
    breed: Optional[str] = None
    age: Optional[int | str] = None
    size: Optional[str] = None
    bio: Optional[str] = None
    energy_level: Optional[int] = None


# ── Canonical entities ────────────────────────────────────────────────────────

class MatchProfile(BaseModel):
    """A matched counterpart dog, ready for display.  Immutable once built."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    owner_name: str = ""
    name: str = ""
    breed: Optional[str] = None
    age: str = ""
    size: Optional[str] = None
    bio: str = ""
    energy_level: Optional[int] = None
    photos: tuple[str, ...] = Field(min_length=1)

    @property
    def primary_photo(self) -> str:
        return self.photos[0]


class LastMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    timestamp: datetime


class Conversation(BaseModel):
    """A chat thread.  ``match_id`` may hold a dog profile id or an owner id."""

    model_config = ConfigDict(frozen=True)

    id: str
    match_id: str
    last_message: Optional[LastMessage] = None
    unread_count: int = Field(default=0, ge=0)


class ConversationWithMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversation: Conversation
    match: MatchProfile


class ReconciledMatches(BaseModel):
    """Output of one reconciliation pass."""

    model_config = ConfigDict(frozen=True)

    unconversed: list[MatchProfile] = []
    conversations: list[ConversationWithMatch] = []
    dropped_conversation_ids: list[str] = []

    def new_matches(self, limit: int) -> list[MatchProfile]:
        """Return the first ``limit`` unconversed matches (highlight strip)."""
        if limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        return self.unconversed[:limit]


# ── API bodies ────────────────────────────────────────────────────────────────

class MatchTarget(BaseModel):
    """Identifies the counterpart dog a lifecycle operation acts on."""

    dog_id: str
    owner_id: str


class UnmatchRequest(MatchTarget):
    confirm: bool = False


class StartConversationResponse(BaseModel):
    conversation_id: str


class UnmatchResponse(BaseModel):
    status: str
    match_id: str


class MatchFeedResponse(BaseModel):
    new_matches: list[MatchProfile]
    unconversed_count: int
    conversations: list[ConversationWithMatch]
