"""Promotion of verified discovered venues into the production catalogue.

The venue row is committed first, then each dish on its own.  If a dish
write fails the discovered venue stays ``verified`` and a retry picks up
where the last run stopped: the venue is found again by name and city, and
dishes already written are matched by name.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from pad.database import async_session, utcnow
from pad.errors import ConflictError, PromotionFailure
from pad.models.discovered_venue import PROMOTED, VERIFIED, DiscoveredVenue
from pad.services import changelog
from pad.services.production_store import ProductionStore
from pad.services.review_query import get_venue

logger = logging.getLogger(__name__)

PROMOTION_REASON = "promoted from discovery pipeline"


@dataclass(frozen=True, slots=True)
class PromotionResult:
    production_venue_id: uuid.UUID
    venue_created: bool
    dishes_created: int
    dishes_updated: int
    already_promoted: bool = False

    @property
    def message(self) -> str:
        if self.already_promoted:
            return "Venue was already promoted"
        action = "created" if self.venue_created else "linked to existing production venue"
        return (
            f"Venue {action}; {self.dishes_created} dish(es) created, "
            f"{self.dishes_updated} updated"
        )


def _same(a: str | None, b: str | None) -> bool:
    return (a or "").strip().casefold() == (b or "").strip().casefold()


class PromotionWriter:
    """Materializes a verified :class:`DiscoveredVenue` as production records."""

    def __init__(
        self, store_factory: Callable[[AsyncSession], ProductionStore] = ProductionStore
    ) -> None:
        self.store_factory = store_factory

    async def promote(
        self,
        venue_id: uuid.UUID,
        *,
        reviewer: str | None = None,
        session: AsyncSession | None = None,
    ) -> PromotionResult:
        close_session = False
        if session is None:
            session = async_session()
            close_session = True

        try:
            venue = await get_venue(session, venue_id)
            if venue.status == PROMOTED:
                return PromotionResult(
                    production_venue_id=venue.production_venue_id,
                    venue_created=False,
                    dishes_created=0,
                    dishes_updated=0,
                    already_promoted=True,
                )
            if venue.status != VERIFIED:
                raise ConflictError(
                    f"Only verified venues can be promoted (venue is {venue.status})",
                    field="status",
                )

            store = self.store_factory(session)
            name = venue.name
            dishes = list(venue.dishes or [])

            production_id, created = await self._write_venue(session, store, venue, reviewer)
            dishes_created, dishes_updated = await self._write_dishes(
                session, store, production_id, name, dishes, reviewer
            )

            venue = await get_venue(session, venue_id)
            venue.status = PROMOTED
            venue.production_venue_id = production_id
            venue.promoted_at = utcnow()
            changelog.record_change(
                session,
                action="updated",
                collection=changelog.DISCOVERED_VENUES,
                document_id=venue_id,
                changes=[
                    {"field": "status", "before": VERIFIED, "after": PROMOTED},
                    {"field": "production_venue_id", "before": None, "after": str(production_id)},
                ],
                reason=PROMOTION_REASON,
                user=reviewer,
            )
            try:
                await session.commit()
            except StaleDataError as exc:
                await session.rollback()
                raise ConflictError(
                    f"Discovered venue {venue_id} changed during promotion; refetch and retry"
                ) from exc

            logger.info(
                "Promoted '%s' -> production venue %s (%s, dishes +%d ~%d)",
                name, production_id, "new" if created else "existing",
                dishes_created, dishes_updated,
            )
            return PromotionResult(
                production_venue_id=production_id,
                venue_created=created,
                dishes_created=dishes_created,
                dishes_updated=dishes_updated,
            )
        finally:
            if close_session:
                await session.close()

    # ------------------------------------------------------------------
    # Venue
    # ------------------------------------------------------------------

    async def _write_venue(
        self,
        session: AsyncSession,
        store: ProductionStore,
        venue: DiscoveredVenue,
        reviewer: str | None,
    ) -> tuple[uuid.UUID, bool]:
        name = venue.name
        try:
            candidates = await store.query_venues(country=venue.country)
            existing = next(
                (v for v in candidates if _same(v.name, venue.name) and _same(v.city, venue.city)),
                None,
            )
            now = utcnow()
            if existing is not None:
                production_id = existing.id
                await store.update_venue(production_id, {"last_verified": now})
                created = False
            else:
                data = {
                    "name": venue.name,
                    "chain_id": venue.chain_id,
                    "street": venue.street,
                    "city": venue.city,
                    "postal_code": venue.postal_code,
                    "country": venue.country,
                    "latitude": venue.latitude,
                    "longitude": venue.longitude,
                    "delivery_platforms": venue.platform_links(),
                    "status": "active",
                    "source": "discovered",
                    "last_verified": now,
                }
                production = await store.create_venue(data)
                production_id = production.id
                created = True
                audit = {k: v for k, v in data.items() if k != "last_verified"}
                changelog.record_change(
                    session,
                    action="created",
                    collection=changelog.VENUES,
                    document_id=production_id,
                    changes=changelog.diff_fields({}, audit),
                    reason=PROMOTION_REASON,
                    user=reviewer,
                )
            await session.commit()
            return production_id, created
        except Exception as exc:
            await session.rollback()
            logger.error("Promotion of '%s' failed writing the venue: %s", name, exc)
            raise PromotionFailure(
                f"Could not write production venue for '{name}': {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Dishes
    # ------------------------------------------------------------------

    async def _write_dishes(
        self,
        session: AsyncSession,
        store: ProductionStore,
        production_id: uuid.UUID,
        venue_name: str,
        dishes: list[dict],
        reviewer: str | None,
    ) -> tuple[int, int]:
        created = updated = 0
        existing = {d.name.casefold(): d for d in await store.get_dishes_by_venue(production_id)}

        for index, dish in enumerate(dishes):
            try:
                match = existing.get(dish["name"].casefold())
                if match is None:
                    data = {
                        "venue_id": production_id,
                        "name": dish["name"],
                        "description": dish.get("description"),
                        "planted_products": [dish["product"]],
                        "price": dish.get("price"),
                        "image_url": dish.get("image_url"),
                    }
                    new_dish = await store.create_dish(data)
                    existing[dish["name"].casefold()] = new_dish
                    audit = {k: v for k, v in data.items() if k != "venue_id"}
                    changelog.record_change(
                        session,
                        action="created",
                        collection=changelog.DISHES,
                        document_id=new_dish.id,
                        changes=changelog.diff_fields({}, audit),
                        reason=PROMOTION_REASON,
                        user=reviewer,
                    )
                    created += 1
                else:
                    before = {
                        "price": match.price,
                        "description": match.description,
                        "image_url": match.image_url,
                    }
                    after = {
                        key: dish.get(key)
                        for key in before
                        if dish.get(key) is not None and dish.get(key) != before[key]
                    }
                    if after:
                        await store.update_dish(match.id, after)
                        changelog.record_change(
                            session,
                            action="updated",
                            collection=changelog.DISHES,
                            document_id=match.id,
                            changes=changelog.diff_fields(before, after),
                            reason=PROMOTION_REASON,
                            user=reviewer,
                        )
                        updated += 1
                await session.commit()
            except Exception as exc:
                await session.rollback()
                logger.error(
                    "Promotion of '%s' failed at dish %d/%d (%s): %s",
                    venue_name, index + 1, len(dishes), dish.get("name"), exc,
                )
                raise PromotionFailure(
                    f"Wrote {index} of {len(dishes)} dishes for '{venue_name}' before "
                    f"'{dish.get('name')}' failed; the venue stays verified, retry to resume"
                ) from exc

        return created, updated
