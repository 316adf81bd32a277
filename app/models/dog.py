"""
PawMatch — Dog profile and photo models.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class DogProfile(Base):
    __tablename__ = "dog_profiles"
    __table_args__ = (
        Index("ix_dog_profiles_owner_primary", "owner_id", "is_primary"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    breed: Mapped[str | None] = mapped_column(String, nullable=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    size: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Small / Medium / Large"
    )
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    energy_level: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="1-5"
    )
    is_primary: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    owner: Mapped["UserProfile"] = relationship(
        "UserProfile", back_populates="dogs"
    )
    photos: Mapped[list["DogPhoto"]] = relationship(
        "DogPhoto",
        back_populates="dog",
        cascade="all, delete-orphan",
        order_by="DogPhoto.order_index",
    )

    def __repr__(self) -> str:
        return f"<DogProfile {self.name!r} owner={self.owner_id}>"


class DogPhoto(Base):
    __tablename__ = "dog_photos"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    dog_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("dog_profiles.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    photo_url: Mapped[str] = mapped_column(String, nullable=False)
    is_primary: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    order_index: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    dog: Mapped["DogProfile"] = relationship("DogProfile", back_populates="photos")

    def __repr__(self) -> str:
        return f"<DogPhoto dog={self.dog_id} idx={self.order_index}>"
