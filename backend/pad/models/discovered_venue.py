"""Discovered venue (review candidate) model."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pad.database import Base, utcnow

DISCOVERED = "discovered"
VERIFIED = "verified"
REJECTED = "rejected"
PROMOTED = "promoted"
STALE = "stale"

VENUE_STATUSES: tuple[str, ...] = (DISCOVERED, VERIFIED, REJECTED, PROMOTED, STALE)


class DiscoveredVenue(Base):
    __tablename__ = "discovered_venues"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(300), nullable=False)

    # Address
    street: Mapped[str | None] = mapped_column(String(300))
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    postal_code: Mapped[str | None] = mapped_column(String(20))
    country: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)

    # Chain
    is_chain: Mapped[bool] = mapped_column(Boolean, default=False)
    chain_id: Mapped[str | None] = mapped_column(String(64), index=True)
    chain_name: Mapped[str | None] = mapped_column(String(200))
    chain_confidence: Mapped[float | None] = mapped_column(Float)

    # Products & dishes (venue-owned, replaced wholesale on edit)
    planted_products: Mapped[list] = mapped_column(JSON, default=list)
    dishes: Mapped[list] = mapped_column(JSON, default=list)

    # Confidence
    confidence_score: Mapped[int] = mapped_column(Integer, default=0, index=True)
    confidence_factors: Mapped[list] = mapped_column(JSON, default=list)

    # Review state
    status: Mapped[str] = mapped_column(String(20), default=DISCOVERED, index=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    production_venue_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))

    # Provenance
    discovered_by_strategy_id: Mapped[str | None] = mapped_column(String(100))
    discovered_by_query: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    promoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )

    # Compare-and-swap counter; every UPDATE asserts the version it read.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    delivery_platforms = relationship(
        "DiscoveredPlatformLink",
        back_populates="venue",
        cascade="all, delete-orphan",
        order_by="DiscoveredPlatformLink.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def address(self) -> dict:
        return {
            "street": self.street,
            "city": self.city,
            "postal_code": self.postal_code,
            "country": self.country,
        }

    @property
    def coordinates(self) -> dict | None:
        if self.latitude is None or self.longitude is None:
            return None
        return {"lat": self.latitude, "lng": self.longitude}

    def platform_links(self) -> list[dict]:
        return [link.to_dict() for link in self.delivery_platforms]

    def snapshot(self) -> dict:
        """Reviewable fields as plain JSON data (used for audit before/after)."""
        return {
            "name": self.name,
            "address": self.address,
            "coordinates": self.coordinates,
            "is_chain": self.is_chain,
            "chain_id": self.chain_id,
            "chain_name": self.chain_name,
            "delivery_platforms": self.platform_links(),
            "planted_products": list(self.planted_products or []),
            "dishes": list(self.dishes or []),
            "status": self.status,
            "rejection_reason": self.rejection_reason,
        }

    # ------------------------------------------------------------------
    # Platform links
    # ------------------------------------------------------------------

    def set_platform_links(self, links: list[dict]) -> None:
        """Replace the platform list, reusing rows for platforms kept.

        Rows are matched by platform so the (venue, platform) unique
        constraint never sees a transient duplicate during flush.
        """
        existing = {link.platform: link for link in self.delivery_platforms}
        new_rows: list[DiscoveredPlatformLink] = []
        for position, data in enumerate(links):
            row = existing.get(data["platform"])
            if row is None:
                row = DiscoveredPlatformLink(platform=data["platform"])
            row.position = position
            row.url = data["url"]
            row.rating = data.get("rating")
            row.review_count = data.get("review_count")
            new_rows.append(row)
        self.delivery_platforms = new_rows

    def add_platform_link(self, data: dict) -> bool:
        """Append a link for a platform not yet present. Returns ``True`` if added."""
        if any(link.platform == data["platform"] for link in self.delivery_platforms):
            return False
        self.delivery_platforms.append(
            DiscoveredPlatformLink(
                platform=data["platform"],
                url=data["url"],
                rating=data.get("rating"),
                review_count=data.get("review_count"),
                position=len(self.delivery_platforms),
            )
        )
        return True


class DiscoveredPlatformLink(Base):
    __tablename__ = "discovered_venue_platforms"
    __table_args__ = (
        UniqueConstraint("venue_id", "platform", name="uq_discovered_venue_platform"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    venue_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("discovered_venues.id"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    platform: Mapped[str] = mapped_column(String(30), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[float | None] = mapped_column(Float)
    review_count: Mapped[int | None] = mapped_column(Integer)

    venue = relationship("DiscoveredVenue", back_populates="delivery_platforms")

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "url": self.url,
            "rating": self.rating,
            "review_count": self.review_count,
        }
