from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from settlement.domain.errors import NotFound, ValidationError
from settlement.domain.models import Listing
from shared.core import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StockMovement:
    requested: int
    applied: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.applied


class SqlCatalog:
    """Catalog adapter over the shared listings table."""

    def __init__(self, db: Session):
        self.db = db

    def get_listing(self, listing_id: int) -> Optional[Listing]:
        return self.db.get(Listing, listing_id)

    def require_listing(self, listing_id: int) -> Listing:
        listing = self.get_listing(listing_id)
        if listing is None:
            raise NotFound("Listing not found", listing_id=listing_id)
        return listing

    def decrement_available(self, listing_id: int, amount: int) -> StockMovement:
        """Take ``amount`` items out of stock without ever going below zero.

        When fewer items remain than requested the counter is clamped to zero
        and the movement reports the shortfall.
        """
        result = self.db.execute(
            update(Listing)
            .where(Listing.id == listing_id, Listing.quantity_available >= amount)
            .values(quantity_available=Listing.quantity_available - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            self.db.get(Listing, listing_id, populate_existing=True)
            return StockMovement(requested=amount, applied=amount)

        listing = self.db.execute(
            select(Listing).where(Listing.id == listing_id).with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if listing is None:
            logger.warning(
                "Stock decrement for unknown listing",
                extra={"extra_fields": {"listing_id": listing_id, "amount": amount}},
            )
            return StockMovement(requested=amount, applied=0)

        applied = max(listing.quantity_available, 0)
        listing.quantity_available = 0
        self.db.flush()
        logger.warning(
            "Stock shortfall while decrementing listing",
            extra={"extra_fields": {"listing_id": listing_id, "requested": amount, "applied": applied}},
        )
        return StockMovement(requested=amount, applied=applied)

    def restock(self, listing_id: int, amount: int) -> Listing:
        if amount < 1:
            raise ValidationError("Restock amount must be at least 1", amount=amount)
        result = self.db.execute(
            update(Listing)
            .where(Listing.id == listing_id)
            .values(quantity_available=Listing.quantity_available + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound("Listing not found", listing_id=listing_id)
        return self.db.get(Listing, listing_id, populate_existing=True)

