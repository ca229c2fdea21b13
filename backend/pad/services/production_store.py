"""Production venue/dish store used by the promotion writer."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pad.models import Dish, Venue


class ProductionStore:
    """Thin repository over the ``venues`` and ``dishes`` tables.

    Methods add and flush but never commit; the caller owns the
    transaction boundary.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Venues
    # ------------------------------------------------------------------

    async def query_venues(
        self, *, country: str | None = None, status: str | None = None
    ) -> list[Venue]:
        stmt = select(Venue)
        if country:
            stmt = stmt.where(Venue.country == country)
        if status:
            stmt = stmt.where(Venue.status == status)
        result = await self.session.execute(stmt.order_by(Venue.created_at, Venue.id))
        return list(result.scalars().all())

    async def get_venue(self, venue_id: uuid.UUID) -> Venue | None:
        return await self.session.get(Venue, venue_id)

    async def create_venue(self, data: dict) -> Venue:
        venue = Venue(**data)
        self.session.add(venue)
        await self.session.flush()
        return venue

    async def update_venue(self, venue_id: uuid.UUID, partial: dict) -> Venue:
        venue = await self.session.get(Venue, venue_id)
        if venue is None:
            raise LookupError(f"production venue {venue_id} not found")
        for key, value in partial.items():
            setattr(venue, key, value)
        await self.session.flush()
        return venue

    # ------------------------------------------------------------------
    # Dishes
    # ------------------------------------------------------------------

    async def get_dishes_by_venue(self, venue_id: uuid.UUID) -> list[Dish]:
        stmt = select(Dish).where(Dish.venue_id == venue_id).order_by(Dish.created_at, Dish.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_dish(self, data: dict) -> Dish:
        dish = Dish(**data)
        self.session.add(dish)
        await self.session.flush()
        return dish

    async def update_dish(self, dish_id: uuid.UUID, partial: dict) -> Dish:
        dish = await self.session.get(Dish, dish_id)
        if dish is None:
            raise LookupError(f"production dish {dish_id} not found")
        for key, value in partial.items():
            setattr(dish, key, value)
        await self.session.flush()
        return dish
