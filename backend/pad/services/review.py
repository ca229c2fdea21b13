"""Reviewer transitions on discovered venues.

Every transition reads the venue, checks its status, writes the new state
and an audit entry, and commits in one unit.  The ``version`` column turns
the commit into a compare-and-swap: when another writer got there first the
flush fails and the caller gets a :class:`ConflictError`.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from pad.config import Settings, get_settings
from pad.database import async_session, utcnow
from pad.errors import ConflictError, PipelineError, PromotionFailure, ValidationError
from pad.models import DiscoveredVenue, DiscoveryStrategy
from pad.models.discovered_venue import DISCOVERED, PROMOTED, REJECTED, VERIFIED
from pad.schemas import VenueUpdate
from pad.services import changelog
from pad.services.normalizer import normalize_country
from pad.services.promotion import PromotionResult, PromotionWriter
from pad.services.review_query import get_venue
from pad.services.scoring import ConfidenceScorer
from pad.services.venue_matcher import VenueMatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransitionResult:
    venue_id: uuid.UUID
    changed: bool
    message: str
    promotion: PromotionResult | None = None


@dataclass
class BulkResult:
    succeeded: list[uuid.UUID] = field(default_factory=list)
    unchanged: list[uuid.UUID] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)
    cancelled: bool = False

    @property
    def count(self) -> int:
        return len(self.succeeded) + len(self.unchanged)


class ReviewService:
    """Verify, reject and edit discovered venues, singly or in bulk."""

    def __init__(
        self,
        settings: Settings | None = None,
        promotion_writer: PromotionWriter | None = None,
        scorer: ConfidenceScorer | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.promotion_writer = promotion_writer or PromotionWriter()
        self.scorer = scorer or ConfidenceScorer()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_version(venue: DiscoveredVenue, expected_version: int | None) -> None:
        if expected_version is not None and venue.version != expected_version:
            raise ConflictError(
                f"Venue {venue.id} is at version {venue.version}, "
                f"not {expected_version}; refetch and retry",
                field="expected_version",
            )

    @staticmethod
    def _proposed(venue: DiscoveredVenue, updates: VenueUpdate) -> dict:
        """The snapshot values *updates* would produce, keyed like ``snapshot()``."""
        data = {
            key: value
            for key, value in updates.model_dump(exclude_unset=True).items()
            if value is not None
        }
        proposed: dict = {}
        for key in ("name", "is_chain", "chain_id", "chain_name", "planted_products", "dishes"):
            if key in data:
                proposed[key] = data[key]
        if "address" in data:
            merged = {**venue.address, **data["address"]}
            if not merged.get("city") or not merged.get("country"):
                raise ValidationError("Address needs a city and a country", field="address")
            proposed["address"] = merged
        if "coordinates" in data:
            proposed["coordinates"] = data["coordinates"]
        if "delivery_platforms" in data:
            proposed["delivery_platforms"] = data["delivery_platforms"]

        if proposed.get("chain_id"):
            proposed["is_chain"] = True
        chain_id = proposed.get("chain_id", venue.chain_id)
        is_chain = proposed.get("is_chain", venue.is_chain)
        if chain_id and not is_chain:
            raise ValidationError("A venue with a chain_id must be a chain", field="is_chain")
        return proposed

    @staticmethod
    def _apply(venue: DiscoveredVenue, proposed: dict) -> None:
        for key in ("name", "is_chain", "chain_id", "chain_name"):
            if key in proposed:
                setattr(venue, key, proposed[key])
        if "planted_products" in proposed:
            venue.planted_products = list(proposed["planted_products"])
        if "dishes" in proposed:
            venue.dishes = list(proposed["dishes"])
        if "address" in proposed:
            address = proposed["address"]
            venue.street = address.get("street")
            venue.city = address["city"]
            venue.postal_code = address.get("postal_code")
            venue.country = address["country"]
        if "coordinates" in proposed:
            venue.latitude = proposed["coordinates"]["lat"]
            venue.longitude = proposed["coordinates"]["lng"]
        if "delivery_platforms" in proposed:
            venue.set_platform_links(proposed["delivery_platforms"])

    @staticmethod
    async def _record_strategy_outcome(
        session: AsyncSession, venue: DiscoveredVenue, *, success: bool
    ) -> None:
        if not venue.discovered_by_strategy_id:
            return
        column = "successful_discoveries" if success else "false_positives"
        await session.execute(
            update(DiscoveryStrategy)
            .where(DiscoveryStrategy.id == venue.discovered_by_strategy_id)
            .values({column: getattr(DiscoveryStrategy, column) + 1})
        )

    @staticmethod
    async def _commit(
        session: AsyncSession, venue_id: uuid.UUID, *, flush_only: bool = False
    ) -> None:
        """Flush or commit the pending venue write, mapping a lost race to a conflict."""
        try:
            if flush_only:
                await session.flush()
            else:
                await session.commit()
        except StaleDataError as exc:
            await session.rollback()
            raise ConflictError(
                f"Venue {venue_id} was changed by another reviewer; refetch and retry"
            ) from exc

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def verify(
        self,
        venue_id: uuid.UUID,
        updates: VenueUpdate | None = None,
        *,
        expected_version: int | None = None,
        reviewer: str | None = None,
        require_changes: bool = False,
        session: AsyncSession | None = None,
    ) -> TransitionResult:
        """Mark a discovered venue verified, applying *updates* in the same commit.

        Verifying an already verified (or promoted) venue with no updates, or
        with updates that match what is stored, succeeds without writing.
        """
        close_session = False
        if session is None:
            session = async_session()
            close_session = True

        try:
            venue = await get_venue(session, venue_id)
            self._check_version(venue, expected_version)

            proposed = self._proposed(venue, updates) if updates is not None else {}
            current = venue.snapshot()
            changes = changelog.diff_fields(current, proposed)
            if require_changes and not changes:
                raise ValidationError("Update-and-verify needs at least one changed field")

            if venue.status in (VERIFIED, PROMOTED):
                if changes:
                    raise ConflictError(
                        f"Venue is already {venue.status}; edits are no longer accepted",
                        field="status",
                    )
                return TransitionResult(venue.id, changed=False, message=f"Venue already {venue.status}")
            if venue.status != DISCOVERED:
                raise ConflictError(
                    f"Cannot verify a {venue.status} venue", field="status"
                )

            self._apply(venue, proposed)
            if changes:
                self.scorer.rescore(venue)
            venue.status = VERIFIED
            venue.rejection_reason = None
            venue.verified_at = utcnow()
            changes.append({"field": "status", "before": DISCOVERED, "after": VERIFIED})
            changelog.record_change(
                session,
                action="updated",
                collection=changelog.DISCOVERED_VENUES,
                document_id=venue.id,
                changes=changes,
                reason="verified with edits" if len(changes) > 1 else "verified",
                user=reviewer,
            )
            # The venue UPDATE must hit the database before the counter UPDATE autoflushes it.
            await self._commit(session, venue_id, flush_only=True)
            await self._record_strategy_outcome(session, venue, success=True)
            await self._commit(session, venue_id)
            logger.info("Verified venue %s ('%s') by %s", venue_id, venue.name, reviewer or "system")

            promotion = None
            message = "Venue verified"
            if self.settings.auto_promote_on_verify:
                try:
                    promotion = await self.promotion_writer.promote(
                        venue_id, reviewer=reviewer, session=session
                    )
                    message = "Venue verified and promoted"
                except PromotionFailure as exc:
                    # The verify is committed; promote can be retried on its own.
                    logger.warning("Auto-promotion of %s failed: %s", venue_id, exc.message)
                    message = f"Venue verified; promotion pending retry ({exc.message})"
            return TransitionResult(
                venue_id, changed=True, message=message, promotion=promotion
            )
        finally:
            if close_session:
                await session.close()

    async def update_and_verify(
        self,
        venue_id: uuid.UUID,
        updates: VenueUpdate,
        *,
        expected_version: int | None = None,
        reviewer: str | None = None,
        session: AsyncSession | None = None,
    ) -> TransitionResult:
        return await self.verify(
            venue_id,
            updates,
            expected_version=expected_version,
            reviewer=reviewer,
            require_changes=True,
            session=session,
        )

    # ------------------------------------------------------------------
    # Reject
    # ------------------------------------------------------------------

    async def reject(
        self,
        venue_id: uuid.UUID,
        reason: str | None,
        *,
        expected_version: int | None = None,
        reviewer: str | None = None,
        session: AsyncSession | None = None,
    ) -> TransitionResult:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required", field="reason")

        close_session = False
        if session is None:
            session = async_session()
            close_session = True

        try:
            venue = await get_venue(session, venue_id)
            self._check_version(venue, expected_version)

            if venue.status == REJECTED:
                if venue.rejection_reason == reason:
                    return TransitionResult(venue.id, changed=False, message="Venue already rejected")
                raise ConflictError("Venue is already rejected with another reason", field="status")
            if venue.status != DISCOVERED:
                raise ConflictError(f"Cannot reject a {venue.status} venue", field="status")

            venue.status = REJECTED
            venue.rejection_reason = reason
            changelog.record_change(
                session,
                action="updated",
                collection=changelog.DISCOVERED_VENUES,
                document_id=venue.id,
                changes=[
                    {"field": "status", "before": DISCOVERED, "after": REJECTED},
                    {"field": "rejection_reason", "before": None, "after": reason},
                ],
                reason=reason,
                user=reviewer,
            )
            # The venue UPDATE must hit the database before the counter UPDATE autoflushes it.
            await self._commit(session, venue_id, flush_only=True)
            await self._record_strategy_outcome(session, venue, success=False)
            await self._commit(session, venue_id)
            logger.info("Rejected venue %s: %s", venue_id, reason)

            if venue.chain_id:
                await VenueMatcher.refresh_chain_confidence(session, venue.chain_id)
                try:
                    await session.commit()
                except StaleDataError:
                    # A sibling moved on meanwhile; its own next write recomputes the mean.
                    await session.rollback()
                    logger.warning(
                        "Chain confidence for %s not refreshed: sibling changed", venue.chain_id
                    )
            return TransitionResult(venue.id, changed=True, message="Venue rejected")
        finally:
            if close_session:
                await session.close()

    # ------------------------------------------------------------------
    # Country correction
    # ------------------------------------------------------------------

    async def update_country(
        self,
        venue_id: uuid.UUID,
        country: str,
        *,
        reviewer: str | None = None,
        session: AsyncSession | None = None,
    ) -> TransitionResult:
        """Fix the country of a venue still awaiting review."""
        code = normalize_country(country)
        if not code:
            raise ValidationError(f"Invalid country '{country}'", field="country")

        close_session = False
        if session is None:
            session = async_session()
            close_session = True

        try:
            venue = await get_venue(session, venue_id)
            if venue.status != DISCOVERED:
                raise ConflictError(
                    f"Country can only be changed while discovered (venue is {venue.status})",
                    field="status",
                )
            if venue.country == code:
                return TransitionResult(venue.id, changed=False, message="Country unchanged")

            changelog.record_change(
                session,
                action="updated",
                collection=changelog.DISCOVERED_VENUES,
                document_id=venue.id,
                changes=[{"field": "country", "before": venue.country, "after": code}],
                reason="country corrected",
                user=reviewer,
            )
            venue.country = code
            await self._commit(session, venue_id)
            return TransitionResult(venue.id, changed=True, message=f"Country set to {code}")
        finally:
            if close_session:
                await session.close()

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def _check_bulk_size(self, ids: list) -> None:
        if not ids:
            raise ValidationError("ids must not be empty", field="ids")
        if len(ids) > self.settings.bulk_max_ids:
            raise ValidationError(
                f"At most {self.settings.bulk_max_ids} ids per bulk request", field="ids"
            )

    async def _run_bulk(self, ids, operation, session, cancel_event) -> BulkResult:
        result = BulkResult()
        seen: set = set()
        for raw_id in ids:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info("Bulk operation cancelled after %d id(s)", len(seen))
                break
            if raw_id in seen:
                continue
            seen.add(raw_id)
            try:
                venue_id = raw_id if isinstance(raw_id, uuid.UUID) else uuid.UUID(str(raw_id))
            except ValueError:
                result.failures.append(
                    {"id": str(raw_id), "error": "not_found", "message": f"Invalid id '{raw_id}'"}
                )
                continue
            try:
                outcome = await operation(venue_id, session)
            except PipelineError as exc:
                await session.rollback()
                result.failures.append({"id": str(raw_id), **exc.to_dict()})
                continue
            if outcome.changed:
                result.succeeded.append(venue_id)
            else:
                result.unchanged.append(venue_id)
            # Yield between records so a cancel request can land.
            await asyncio.sleep(0)
        return result

    async def bulk_verify(
        self,
        ids: list,
        *,
        reviewer: str | None = None,
        cancel_event: asyncio.Event | None = None,
        session: AsyncSession | None = None,
    ) -> BulkResult:
        """Verify each id independently; failures are reported, never raised."""
        self._check_bulk_size(ids)

        close_session = False
        if session is None:
            session = async_session()
            close_session = True

        try:
            result = await self._run_bulk(
                ids,
                lambda venue_id, s: self.verify(venue_id, reviewer=reviewer, session=s),
                session,
                cancel_event,
            )
            logger.info(
                "Bulk verify: %d verified, %d unchanged, %d failed",
                len(result.succeeded), len(result.unchanged), len(result.failures),
            )
            return result
        finally:
            if close_session:
                await session.close()

    async def bulk_reject(
        self,
        ids: list,
        reason: str | None,
        *,
        reviewer: str | None = None,
        cancel_event: asyncio.Event | None = None,
        session: AsyncSession | None = None,
    ) -> BulkResult:
        if not (reason or "").strip():
            raise ValidationError("A rejection reason is required", field="reason")
        self._check_bulk_size(ids)

        close_session = False
        if session is None:
            session = async_session()
            close_session = True

        try:
            result = await self._run_bulk(
                ids,
                lambda venue_id, s: self.reject(venue_id, reason, reviewer=reviewer, session=s),
                session,
                cancel_event,
            )
            logger.info(
                "Bulk reject: %d rejected, %d unchanged, %d failed",
                len(result.succeeded), len(result.unchanged), len(result.failures),
            )
            return result
        finally:
            if close_session:
                await session.close()
