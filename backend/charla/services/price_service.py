# Overview: Service-layer operations for the price ledger; keeps per-product price history with validity intervals.

"""
Price Ledger

WHY: Prices drift. Every sale reports the unit price actually charged;
when it differs from the catalog price we keep the old one as closed
history instead of overwriting it.

INVARIANT: at most one open entry (valid_to IS NULL) per product.
The open entry is closed and flushed before the new one is inserted,
both inside the caller's transaction. The partial unique index on
product_prices rejects anything that would leave two entries open.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Product, ProductPrice
from charla.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .extraction_validator import MAX_AMOUNT_CENTS

logger = logging.getLogger(__name__)


def _open_entry(product_id: int, for_update: bool = False) -> ProductPrice | None:
    query = db.session.query(ProductPrice).filter(
        ProductPrice.product_id == product_id,
        ProductPrice.valid_to.is_(None),
    )
    if for_update:
        query = lock_for_update(query)
    return query.first()


def get_current_price(product_id: int) -> int | None:
    """Current unit price in cents, or None if the product never had one."""
    entry = _open_entry(product_id)
    return entry.unit_price_cents if entry else None


def get_price_history(product_id: int) -> list[ProductPrice]:
    """All entries for a product, most recent first."""
    return (
        db.session.query(ProductPrice)
        .filter_by(product_id=product_id)
        .order_by(ProductPrice.valid_from.desc(), ProductPrice.id.desc())
        .all()
    )


def record_price_if_changed(
    product_id: int,
    observed_price_cents: int,
    now: datetime | None = None,
    commit: bool = False,
) -> ProductPrice | None:
    """
    Record observed_price_cents as the product's current price if it differs.

    - No open entry: opens the first one.
    - Open entry with the same price: no-op, returns None.
    - Open entry with another price: closes it (valid_to=now) and opens
      a new one (valid_from=now).

    Exact integer comparison on cents; there is no tolerance.
    Does not commit unless commit=True.
    """
    if observed_price_cents is None or not 0 < observed_price_cents <= MAX_AMOUNT_CENTS:
        raise ValidationError(
            "Price must be positive and within range",
            details={"product_id": product_id, "price_cents": observed_price_cents},
        )

    now = now or utcnow()
    current = _open_entry(product_id, for_update=True)

    if current is not None and current.unit_price_cents == observed_price_cents:
        return None

    previous_cents = None
    if current is not None:
        previous_cents = current.unit_price_cents
        current.valid_to = now
        # Close must hit the database before the new open row exists.
        db.session.flush()

    entry = ProductPrice(
        product_id=product_id,
        unit_price_cents=observed_price_cents,
        valid_from=now,
        valid_to=None,
    )
    db.session.add(entry)
    db.session.flush()

    if previous_cents is None:
        logger.info("Opened price for product %s at %s cents", product_id, observed_price_cents)
    else:
        logger.info(
            "Price change for product %s: %s -> %s cents",
            product_id, previous_cents, observed_price_cents,
        )

    if commit:
        db.session.commit()
    return entry


def set_price(tenant_id: int, product_id: int, price_cents: int) -> ProductPrice | None:
    """
    Explicit catalog price change for a tenant's product.

    Same close/open rule as record_price_if_changed; commits.

    Raises:
        NotFoundError: product does not exist for this tenant.
        ValidationError: non-positive price.
    """
    def _op():
        product = (
            db.session.query(Product)
            .filter_by(id=product_id, tenant_id=tenant_id)
            .first()
        )
        if not product:
            raise NotFoundError("Product not found", details={"product_id": product_id})

        entry = record_price_if_changed(product.id, price_cents, commit=False)
        db.session.commit()
        return entry

    return run_with_retry(_op)
