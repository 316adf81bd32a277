"""
PawMatch — SQL-backed match, profile and conversation stores

Implements the lookups the normalizer, lifecycle service and match feed
depend on, on top of an ``AsyncSession``.  Every ``SQLAlchemyError`` is
re-raised as ``FetchError`` so callers deal with a single failure type.
"""

from __future__ import annotations

import uuid
from typing import Iterable

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.errors import FetchError, NotFoundError, ValidationError
from app.models.conversation import Conversation as ConversationRecord
from app.models.conversation import Message
from app.models.dog import DogPhoto, DogProfile
from app.models.match import Match
from app.models.user import UserProfile
from app.schemas.match import Conversation, DogProfileRecord, LastMessage, MatchRow

logger = structlog.get_logger("pawmatch.match_store")

# Every table the stores below read or write.
MATCH_STORE_TABLES: tuple[str, ...] = tuple(
    model.__tablename__
    for model in (UserProfile, DogProfile, DogPhoto, Match, ConversationRecord, Message)
)


def _to_uuid(value: str | uuid.UUID, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} is not a valid id: {value!r}") from exc


def _to_uuids(values: Iterable[str], field: str) -> list[uuid.UUID]:
    return [_to_uuid(v, field) for v in values]


def _row_to_schema(match: Match) -> MatchRow:
    return MatchRow(
        id=str(match.id),
        user1_id=str(match.user1_id),
        user2_id=str(match.user2_id),
        matched_at=match.matched_at,
        is_active=match.is_active,
    )


def _pair_clause(user_a: uuid.UUID, user_b: uuid.UUID):
    return or_(
        and_(Match.user1_id == user_a, Match.user2_id == user_b),
        and_(Match.user1_id == user_b, Match.user2_id == user_a),
    )


class SqlMatchStore:
    """Match-row source, profile lookups and match-row mutator."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session
        self.default_owner_name: str = get_settings().DEFAULT_OWNER_NAME

    # ── Match rows ────────────────────────────────────────────────────────

    async def fetch_active_matches(self, user_id: str) -> list[MatchRow]:
        """Active match rows involving ``user_id``, newest ``matched_at`` first."""
        uid = _to_uuid(user_id, "user_id")
        stmt = (
            select(Match)
            .where(or_(Match.user1_id == uid, Match.user2_id == uid))
            .where(Match.is_active.is_(True))
            .order_by(Match.matched_at.desc())
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("fetch_active_matches_failed", user_id=user_id, error=str(exc))
            raise FetchError("Failed to load matches") from exc

        rows = [_row_to_schema(m) for m in result.scalars().all()]
        logger.debug("active_matches_fetched", user_id=user_id, count=len(rows))
        return rows

    async def find_active_match_rows(
        self,
        actor_id: str,
        counterpart_id: str,
    ) -> list[MatchRow]:
        """Active rows linking the two users in either column order, newest first."""
        stmt = (
            select(Match)
            .where(
                _pair_clause(
                    _to_uuid(actor_id, "actor_id"),
                    _to_uuid(counterpart_id, "counterpart_id"),
                )
            )
            .where(Match.is_active.is_(True))
            .order_by(Match.matched_at.desc())
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error(
                "find_active_match_rows_failed",
                actor_id=actor_id,
                counterpart_id=counterpart_id,
                error=str(exc),
            )
            raise FetchError("Failed to look up match") from exc

        return [_row_to_schema(m) for m in result.scalars().all()]

    async def deactivate_match(self, match_row_id: str) -> None:
        """Logically delete a match row by clearing ``is_active``."""
        stmt = (
            update(Match)
            .where(Match.id == _to_uuid(match_row_id, "match_row_id"))
            .values(is_active=False)
        )
        try:
            result = await self.db.execute(stmt)
            await self.db.flush()
        except SQLAlchemyError as exc:
            logger.error("deactivate_match_failed", match_id=match_row_id, error=str(exc))
            raise FetchError("Failed to deactivate match") from exc

        if result.rowcount == 0:
            raise NotFoundError(f"Match {match_row_id} not found")
        logger.info("match_deactivated", match_id=match_row_id)

    # ── Profile lookups ───────────────────────────────────────────────────

    async def fetch_owner_names(self, owner_ids: set[str]) -> dict[str, str]:
        if not owner_ids:
            return {}
        stmt = select(UserProfile.id, UserProfile.full_name).where(
            UserProfile.id.in_(_to_uuids(owner_ids, "owner_id"))
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("fetch_owner_names_failed", error=str(exc))
            raise FetchError("Failed to load owner names") from exc

        names = {str(oid): name or self.default_owner_name for oid, name in result.all()}
        for owner_id in owner_ids:
            names.setdefault(owner_id, self.default_owner_name)
        return names

    async def fetch_primary_dog_profiles(
        self,
        owner_ids: set[str],
    ) -> list[DogProfileRecord]:
        if not owner_ids:
            return []
        stmt = (
            select(DogProfile)
            .where(DogProfile.owner_id.in_(_to_uuids(owner_ids, "owner_id")))
            .where(DogProfile.is_primary.is_(True))
            .order_by(DogProfile.created_at.asc())
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("fetch_primary_dog_profiles_failed", error=str(exc))
            raise FetchError("Failed to load dog profiles") from exc

        return [
            DogProfileRecord(
                id=str(d.id),
                owner_id=str(d.owner_id),
                name=d.name,
                breed=d.breed,
                age=d.age,
                size=d.size,
                bio=d.bio,
                energy_level=d.energy_level,
            )
            for d in result.scalars().all()
        ]

    async def fetch_photos(self, dog_ids: set[str]) -> dict[str, list[str]]:
        """Photo URLs per dog, ``order_index`` ascending."""
        if not dog_ids:
            return {}
        stmt = (
            select(DogPhoto.dog_id, DogPhoto.photo_url)
            .where(DogPhoto.dog_id.in_(_to_uuids(dog_ids, "dog_id")))
            .order_by(DogPhoto.order_index.asc())
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("fetch_photos_failed", error=str(exc))
            raise FetchError("Failed to load dog photos") from exc

        photos: dict[str, list[str]] = {}
        for dog_id, url in result.all():
            photos.setdefault(str(dog_id), []).append(url)
        return photos


class SqlConversationStore:
    """Conversation store: list and idempotent create."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        """Conversations on the user's active matches.

        ``match_id`` on the returned conversations is the counterpart
        owner id, which the reconciliation engine joins through its
        owner-id key.
        """
        uid = _to_uuid(user_id, "user_id")
        log = logger.bind(user_id=user_id)

        stmt = (
            select(ConversationRecord, Match)
            .join(Match, ConversationRecord.match_id == Match.id)
            .where(or_(Match.user1_id == uid, Match.user2_id == uid))
            .where(Match.is_active.is_(True))
            .where(ConversationRecord.is_active.is_(True))
            .order_by(ConversationRecord.last_message_at.desc().nulls_last())
        )
        try:
            result = await self.db.execute(stmt)
            pairs = result.all()
            conversation_ids = [conv.id for conv, _ in pairs]
            last_messages = await self._latest_messages(conversation_ids)
            unread = await self._unread_counts(conversation_ids, uid)
        except SQLAlchemyError as exc:
            log.error("list_conversations_failed", error=str(exc))
            raise FetchError("Failed to load conversations") from exc

        conversations: list[Conversation] = []
        for conv, match in pairs:
            counterpart = match.user2_id if match.user1_id == uid else match.user1_id
            latest = last_messages.get(conv.id)
            conversations.append(
                Conversation(
                    id=str(conv.id),
                    match_id=str(counterpart),
                    last_message=(
                        LastMessage(text=latest.text, timestamp=latest.created_at)
                        if latest is not None
                        else None
                    ),
                    unread_count=unread.get(conv.id, 0),
                )
            )

        log.info("conversations_listed", count=len(conversations))
        return conversations

    async def create_conversation(self, match_id: str) -> str:
        """Return the active conversation for ``match_id``, creating it if needed.

        The insert runs in a savepoint.  If a concurrent request created the
        conversation first, the unique index on active conversations rejects
        ours and the winner's id is returned instead.  The new row is flushed
        before returning so a read issued right after on the same session
        sees it.
        """
        mid = _to_uuid(match_id, "match_id")
        log = logger.bind(match_id=match_id)

        try:
            existing_id = await self._active_conversation_id(mid)
            if existing_id is not None:
                log.info("conversation_exists", conversation_id=str(existing_id))
                return str(existing_id)

            conversation = ConversationRecord(match_id=mid, is_active=True)
            try:
                async with self.db.begin_nested():
                    self.db.add(conversation)
                    await self.db.flush()
            except IntegrityError:
                existing_id = await self._active_conversation_id(mid)
                if existing_id is None:
                    raise
                log.info("conversation_created_concurrently", conversation_id=str(existing_id))
                return str(existing_id)
        except SQLAlchemyError as exc:
            log.error("create_conversation_failed", error=str(exc))
            raise FetchError("Failed to create conversation") from exc

        log.info("conversation_created", conversation_id=str(conversation.id))
        return str(conversation.id)

    # ── Private helpers ──────────────────────────────────────────────────

    async def _active_conversation_id(self, match_id: uuid.UUID) -> uuid.UUID | None:
        result = await self.db.execute(
            select(ConversationRecord.id)
            .where(ConversationRecord.match_id == match_id)
            .where(ConversationRecord.is_active.is_(True))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _latest_messages(
        self,
        conversation_ids: list[uuid.UUID],
    ) -> dict[uuid.UUID, Message]:
        if not conversation_ids:
            return {}
        latest = (
            select(
                Message.conversation_id,
                func.max(Message.created_at).label("latest_at"),
            )
            .where(Message.conversation_id.in_(conversation_ids))
            .group_by(Message.conversation_id)
            .subquery()
        )
        stmt = select(Message).join(
            latest,
            and_(
                Message.conversation_id == latest.c.conversation_id,
                Message.created_at == latest.c.latest_at,
            ),
        )
        result = await self.db.execute(stmt)
        messages: dict[uuid.UUID, Message] = {}
        for message in result.scalars().all():
            messages.setdefault(message.conversation_id, message)
        return messages

    async def _unread_counts(
        self,
        conversation_ids: list[uuid.UUID],
        reader_id: uuid.UUID,
    ) -> dict[uuid.UUID, int]:
        if not conversation_ids:
            return {}
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .where(Message.conversation_id.in_(conversation_ids))
            .where(Message.sender_id != reader_id)
            .where(Message.read_at.is_(None))
            .group_by(Message.conversation_id)
        )
        result = await self.db.execute(stmt)
        return {conv_id: count for conv_id, count in result.all()}
