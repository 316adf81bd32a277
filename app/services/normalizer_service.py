"""
PawMatch — Match Record Normalizer

Turns the raw results of the match-row, owner-name, dog-profile and photo
lookups into canonical ``MatchProfile`` entities.

Pipeline:
  1. Resolve the counterpart owner of every match row (per row, never fixed).
  2. Deduplicate counterpart ids before touching the data sources.
  3. Fetch owner names and primary dog profiles concurrently, then photos.
  4. Build one profile per counterpart in match-row order.

Any lookup failure aborts the whole pass; partial results are never returned.
"""

from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping, Protocol, Sequence

import structlog

from app.config import get_settings
from app.errors import FetchError, PawMatchError, ValidationError
from app.schemas.match import DogProfileRecord, MatchProfile, MatchRow

logger = structlog.get_logger("pawmatch.normalizer_service")


class ProfileSource(Protocol):
    """Lookups the normalizer delegates to (see ``app.services.match_store``)."""

    async def fetch_owner_names(self, owner_ids: set[str]) -> Mapping[str, str]: ...

    async def fetch_primary_dog_profiles(
        self, owner_ids: set[str]
    ) -> Sequence[DogProfileRecord]: ...

    async def fetch_photos(self, dog_ids: set[str]) -> Mapping[str, Sequence[str]]: ...


# ──────────────────────────────────────────────────────────────────────────────
# Pure helpers
# ──────────────────────────────────────────────────────────────────────────────

def counterpart_id(row: MatchRow, user_id: str) -> str:
    """Return the id of the other user in ``row``."""
    return row.user2_id if row.user1_id == user_id else row.user1_id


def unique_counterpart_ids(rows: Iterable[MatchRow], user_id: str) -> list[str]:
    """Distinct counterpart ids in first-seen (match-row) order."""
    seen: dict[str, None] = {}
    for row in rows:
        seen.setdefault(counterpart_id(row, user_id), None)
    return list(seen)


def format_age(age: Any) -> str:
    """``3 -> "3 years"``, ``1 -> "1 year"``; anything else passes through."""
    if isinstance(age, int) and not isinstance(age, bool):
        return f"{age} year{'s' if age != 1 else ''}"
    if age is None:
        return ""
    return str(age)


def default_bio(name: str, breed: str | None) -> str:
    return f"Hi! I'm {name}, a friendly {breed or 'pup'} looking for playmates!"


def build_photo_list(photos: Sequence[str] | None, placeholder: str) -> list[str]:
    """Keep the fetched order; substitute a single placeholder when empty."""
    ordered = [p for p in (photos or []) if p]
    return ordered if ordered else [placeholder]


# ──────────────────────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────────────────────

class MatchNormalizer:
    """Builds ``MatchProfile`` lists from raw match rows.

    The placeholder photo and default owner name come from configuration
    unless given explicitly.
    """

    def __init__(
        self,
        placeholder_photo_url: str | None = None,
        default_owner_name: str | None = None,
    ) -> None:
        settings = get_settings()
        self.placeholder_photo_url: str = (
            placeholder_photo_url or settings.PLACEHOLDER_PHOTO_URL
        )
        self.default_owner_name: str = (
            default_owner_name or settings.DEFAULT_OWNER_NAME
        )

    async def normalize(
        self,
        user_id: str,
        rows: Sequence[MatchRow],
        source: ProfileSource,
    ) -> list[MatchProfile]:
        """Normalize active match rows for ``user_id`` into display profiles.

        Parameters
        ----------
        user_id:
            Id of the user whose matches are being loaded.
        rows:
            Active match rows, newest first.  Activity is not re-checked.
        source:
            Owner-name, dog-profile and photo lookups.

        Returns
        -------
        list[MatchProfile]
            One profile per distinct counterpart that has a primary dog,
            in match-row order.

        Raises
        ------
        ValidationError
            If ``user_id`` is blank, a row has no usable identifiers, or a
            lookup rejects an identifier as malformed.
        FetchError
            If any lookup fails.
        """
        if not user_id:
            raise ValidationError("user_id is required")
        for row in rows:
            if not row.id or not row.user1_id or not row.user2_id:
                raise ValidationError(f"Match row {row.id!r} is missing an identifier")

        log = logger.bind(user_id=user_id, row_count=len(rows))
        if not rows:
            log.info("normalize_no_matches")
            return []

        owner_ids = unique_counterpart_ids(rows, user_id)
        owner_id_set = set(owner_ids)

        try:
            owner_names, dogs = await asyncio.gather(
                source.fetch_owner_names(owner_id_set),
                source.fetch_primary_dog_profiles(owner_id_set),
            )
            dog_ids = {dog.id for dog in dogs}
            photos_by_dog = await source.fetch_photos(dog_ids) if dog_ids else {}
        except PawMatchError:
            log.warning("normalize_lookup_failed")
            raise
        except Exception as exc:
            log.exception("normalize_lookup_failed")
            raise FetchError(f"Failed to load match profiles: {exc}") from exc

        # One primary dog per owner; the first record wins if the source
        # returns more than one.
        dog_by_owner: dict[str, DogProfileRecord] = {}
        for dog in dogs:
            dog_by_owner.setdefault(dog.owner_id, dog)

        profiles: list[MatchProfile] = []
        for owner_id in owner_ids:
            dog = dog_by_owner.get(owner_id)
            if dog is None:
                log.debug("normalize_owner_without_primary_dog", owner_id=owner_id)
                continue
            profiles.append(
                self.build_profile(
                    dog,
                    owner_name=owner_names.get(owner_id),
                    photos=photos_by_dog.get(dog.id),
                )
            )

        log.info(
            "normalize_complete",
            owner_count=len(owner_ids),
            profile_count=len(profiles),
        )
        return profiles

    def build_profile(
        self,
        dog: DogProfileRecord,
        owner_name: str | None = None,
        photos: Sequence[str] | None = None,
    ) -> MatchProfile:
        """Build a single ``MatchProfile`` from a dog record and its lookups."""
        return MatchProfile(
            id=dog.id,
            owner_id=dog.owner_id,
            owner_name=owner_name or self.default_owner_name,
            name=dog.name,
            breed=dog.breed,
            age=format_age(dog.age),
            size=dog.size,
            bio=dog.bio or default_bio(dog.name, dog.breed),
            energy_level=dog.energy_level,
            photos=build_photo_list(photos, self.placeholder_photo_url),
        )
