# Overview: Service-layer operations for sales; the transaction writer for creating, editing and cancelling sales.

"""
Transaction Writer

WHY: A spoken sale becomes several dependent rows (header, lines,
payments, price history). They are written as one database transaction:
either everything is committed or nothing is.

CREATE FLOW (single transaction):
1. Resolve every payment phrase first; an unresolved phrase fails the
   sale before anything is written.
2. Take the per-tenant write lock, compute the daily ordinal.
3. Customer, header, then per item: product + price ledger + line.
4. Payments, commit.

FAILURES:
- Daily ordinal collision -> ConcurrencyConflict, retried once with a
  fresh ordinal; a second collision is surfaced.
- Anything else after the header insert -> rollback + PartialWriteFailure.
  If the rollback itself fails, the header and its children are deleted
  in a new transaction before the error is reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from ..errors import (
    AlreadyCancelledError,
    ConcurrencyConflict,
    NotFoundError,
    PartialWriteFailure,
    PaymentMethodUnresolved,
    SaleVoidedError,
    ValidationError,
)
from ..extensions import db
from ..models import Sale, SaleLine, SalePayment, Tenant
from charla.time_utils import business_date, parse_iso_datetime, utcnow
from .catalog_service import (
    get_customer,
    get_or_create_customer,
    list_payment_methods,
    resolve_payment_method,
    resolve_product,
)
from .concurrency import lock_for_update, lock_tenant_for_write, run_with_retry
from .extraction_validator import MAX_AMOUNT_CENTS, NormalizedSale
from .price_service import get_current_price, record_price_if_changed
from .tenant_service import tenant_query

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("total_cents", "customer_id", "customer_name", "note", "occurred_at", "is_incomplete")
MAX_NOTE_LENGTH = 500


@dataclass(frozen=True)
class PriceChange:
    product_id: int
    product_name: str
    previous_price_cents: int
    new_price_cents: int

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "previous_price_cents": self.previous_price_cents,
            "new_price_cents": self.new_price_cents,
        }


@dataclass
class SaleWriteResult:
    """What create_sale wrote, for the turn acknowledgment."""
    sale: Sale
    price_changes: list[PriceChange] = field(default_factory=list)
    created_products: list[str] = field(default_factory=list)


def _get_tenant(tenant_id: int) -> Tenant:
    tenant = db.session.get(Tenant, tenant_id)
    if not tenant:
        raise NotFoundError("Tenant not found", details={"tenant_id": tenant_id})
    return tenant


def tenant_today(tenant_id: int, now: datetime | None = None) -> date:
    """Current calendar day in the tenant's timezone."""
    tenant = _get_tenant(tenant_id)
    return business_date(now or utcnow(), tenant.timezone)


def next_daily_number(tenant_id: int, day: date) -> int:
    """
    Highest ordinal used on that day plus one (voided sales included,
    ordinals are never reused). Only meaningful under lock_tenant_for_write.
    """
    current = (
        db.session.query(func.max(Sale.daily_number))
        .filter(Sale.tenant_id == tenant_id, Sale.business_date == day)
        .scalar()
    )
    return (current or 0) + 1


def _resolve_payments(tenant_id: int, normalized: NormalizedSale) -> list[tuple[int, int]]:
    methods = list_payment_methods(tenant_id)
    resolved = []
    unresolved = []
    for payment in normalized.payments:
        method = resolve_payment_method(payment.method_name, methods)
        if method is None:
            unresolved.append(payment.method_name)
        else:
            resolved.append((method.id, payment.amount_cents))

    if unresolved:
        raise PaymentMethodUnresolved(
            "Payment method not recognized",
            details={
                "payment_methods": unresolved,
                "available": [m.name for m in methods],
            },
        )
    return resolved


def _discard_partial_sale(sale_id: int | None) -> None:
    """
    Roll back a failed create; if the rollback cannot be trusted, delete
    whatever of the sale reached the database.
    """
    try:
        db.session.rollback()
    except SQLAlchemyError:
        logger.exception("Rollback failed while discarding sale %s", sale_id)
        db.session.remove()

    if sale_id is None:
        return

    header = db.session.query(Sale.id).filter_by(id=sale_id).first()
    if header is None:
        return

    logger.error("Compensating partially written sale %s", sale_id)
    db.session.query(SalePayment).filter_by(sale_id=sale_id).delete(synchronize_session=False)
    db.session.query(SaleLine).filter_by(sale_id=sale_id).delete(synchronize_session=False)
    db.session.query(Sale).filter_by(id=sale_id).delete(synchronize_session=False)
    db.session.commit()


def create_sale(tenant_id: int, normalized: NormalizedSale, now: datetime | None = None) -> SaleWriteResult:
    """
    Persist a validated sale with its lines and payments.

    Raises:
        PaymentMethodUnresolved: a payment phrase matched no method (nothing written).
        ConcurrencyConflict: the daily ordinal collided twice.
        PartialWriteFailure: the write failed after the header insert (nothing committed).
    """
    now = now or utcnow()
    tenant = _get_tenant(tenant_id)
    day = business_date(now, tenant.timezone)
    payments = _resolve_payments(tenant_id, normalized)

    def _op():
        lock_tenant_for_write(tenant_id)
        daily_number = next_daily_number(tenant_id, day)
        customer = get_or_create_customer(tenant_id, normalized.customer_name)

        sale = Sale(
            tenant_id=tenant_id,
            daily_number=daily_number,
            business_date=day,
            occurred_at=now,
            total_cents=normalized.total_cents,
            customer_id=customer.id if customer else None,
            note=normalized.note[:MAX_NOTE_LENGTH] if normalized.note else None,
            # a sale nobody said how it was paid for is kept, flagged incomplete
            is_incomplete=not payments,
            is_voided=False,
        )
        db.session.add(sale)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflict(
                "Daily sale number already taken",
                details={"business_date": day.isoformat(), "daily_number": daily_number},
            ) from exc

        sale_id = sale.id
        result = SaleWriteResult(sale=sale)
        try:
            for item in normalized.items:
                product = resolve_product(tenant_id, item.product_name)
                previous_cents = get_current_price(product.id)
                entry = record_price_if_changed(product.id, item.unit_price_cents, now=now)
                if product.created:
                    result.created_products.append(product.name)
                elif entry is not None and previous_cents is not None:
                    result.price_changes.append(
                        PriceChange(
                            product_id=product.id,
                            product_name=product.name,
                            previous_price_cents=previous_cents,
                            new_price_cents=item.unit_price_cents,
                        )
                    )

                db.session.add(
                    SaleLine(
                        sale_id=sale_id,
                        product_id=product.id,
                        product_label=item.product_name,
                        presentation=item.presentation,
                        quantity=item.quantity,
                        unit_price_cents=item.unit_price_cents,
                        line_total_cents=item.line_total_cents,
                    )
                )

            for method_id, amount_cents in payments:
                db.session.add(
                    SalePayment(
                        sale_id=sale_id,
                        payment_method_id=method_id,
                        amount_cents=amount_cents,
                    )
                )

            db.session.commit()
        except ConcurrencyConflict:
            raise
        except SQLAlchemyError as exc:
            _discard_partial_sale(sale_id)
            raise PartialWriteFailure(
                "Sale could not be saved",
                details={"stage": "children", "error": type(exc).__name__},
            ) from exc
        except Exception:
            _discard_partial_sale(sale_id)
            raise

        logger.info(
            "Created sale %s (#%s on %s) for tenant %s: %s cents, %d lines, %d payments",
            sale_id, daily_number, day.isoformat(), tenant_id,
            normalized.total_cents, len(normalized.items), len(payments),
        )
        return result

    return run_with_retry(_op, attempts=2, retry_on=(ConcurrencyConflict, OperationalError))


def _validate_edit_fields(fields: dict) -> dict:
    if not isinstance(fields, dict):
        raise ValidationError("Fields must be an object")

    updates = {k: fields[k] for k in EDITABLE_FIELDS if k in fields}
    if not updates:
        raise ValidationError("No fields provided to update", details={"allowed": list(EDITABLE_FIELDS)})

    if "total_cents" in updates:
        total = updates["total_cents"]
        if isinstance(total, bool) or not isinstance(total, int) or not 0 <= total <= MAX_AMOUNT_CENTS:
            raise ValidationError(f"total_cents must be an integer between 0 and {MAX_AMOUNT_CENTS}")

    if "customer_id" in updates:
        customer_id = updates["customer_id"]
        if customer_id is not None and (isinstance(customer_id, bool) or not isinstance(customer_id, int)):
            raise ValidationError("customer_id must be an integer or null")

    if "customer_name" in updates:
        name = updates["customer_name"]
        if name is not None and (not isinstance(name, str) or not name.strip()):
            raise ValidationError("customer_name must be a non-empty string or null")

    if "note" in updates:
        note = updates["note"]
        if note is not None:
            if not isinstance(note, str):
                raise ValidationError("note must be a string or null")
            if len(note) > MAX_NOTE_LENGTH:
                raise ValidationError(f"Note must be {MAX_NOTE_LENGTH} characters or less")

    if "occurred_at" in updates:
        value = updates["occurred_at"]
        if isinstance(value, str):
            try:
                value = parse_iso_datetime(value)
            except ValueError as exc:
                raise ValidationError("occurred_at must be an ISO-8601 datetime") from exc
        if not isinstance(value, datetime):
            raise ValidationError("occurred_at must be an ISO-8601 datetime")
        updates["occurred_at"] = value

    if "is_incomplete" in updates and not isinstance(updates["is_incomplete"], bool):
        raise ValidationError("is_incomplete must be a boolean")

    return updates


def edit_sale(tenant_id: int, sale_id: int, fields: dict) -> Sale:
    """
    Update header fields of a non-voided sale.

    Lines and payments are not touched, and a new total is not
    re-checked against them: after creation the header total is the
    business record. daily_number/business_date never change, even if
    occurred_at moves to another day.

    Raises:
        ValidationError: no recognized field, or a bad value.
        NotFoundError: no such sale for this tenant.
        SaleVoidedError: the sale is voided.
    """
    updates = _validate_edit_fields(fields)

    def _op():
        sale = lock_for_update(tenant_query(Sale, tenant_id).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})
        if sale.is_voided:
            raise SaleVoidedError("Cannot edit a cancelled sale", details={"sale_id": sale_id})

        if "customer_id" in updates:
            customer_id = updates["customer_id"]
            if customer_id is not None and get_customer(tenant_id, customer_id) is None:
                raise ValidationError("Invalid customer", details={"customer_id": customer_id})
            sale.customer_id = customer_id

        if "customer_name" in updates:
            customer = get_or_create_customer(tenant_id, updates["customer_name"])
            sale.customer_id = customer.id if customer else None

        if "total_cents" in updates:
            sale.total_cents = updates["total_cents"]
        if "note" in updates:
            sale.note = updates["note"]
        if "occurred_at" in updates:
            sale.occurred_at = updates["occurred_at"]
        if "is_incomplete" in updates:
            sale.is_incomplete = updates["is_incomplete"]

        db.session.commit()
        logger.info("Edited sale %s for tenant %s: %s", sale_id, tenant_id, sorted(updates))
        return sale

    return run_with_retry(_op)


def cancel_sale(tenant_id: int, sale_id: int, now: datetime | None = None) -> Sale:
    """
    Void a sale. Rows are never deleted.

    Raises:
        NotFoundError: no such sale for this tenant.
        AlreadyCancelledError: the sale was already voided (left untouched).
    """
    def _op():
        sale = lock_for_update(tenant_query(Sale, tenant_id).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError("Sale not found", details={"sale_id": sale_id})
        if sale.is_voided:
            raise AlreadyCancelledError("Sale is already cancelled", details={"sale_id": sale_id})

        sale.is_voided = True
        sale.voided_at = now or utcnow()
        db.session.commit()
        logger.info("Cancelled sale %s for tenant %s", sale_id, tenant_id)
        return sale

    return run_with_retry(_op)


def get_sale(tenant_id: int, sale_id: int) -> Sale:
    sale = tenant_query(Sale, tenant_id).filter_by(id=sale_id).first()
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales_for_day(tenant_id: int, day: date, include_voided: bool = False) -> list[Sale]:
    """Sales of one tenant-local calendar day, by daily number."""
    query = tenant_query(Sale, tenant_id).filter(Sale.business_date == day)
    if not include_voided:
        query = query.filter(Sale.is_voided.is_(False))
    return query.order_by(Sale.daily_number.asc()).all()


def list_recent_sales(tenant_id: int, limit: int = 5, include_voided: bool = False) -> list[Sale]:
    query = tenant_query(Sale, tenant_id)
    if not include_voided:
        query = query.filter(Sale.is_voided.is_(False))
    return query.order_by(Sale.occurred_at.desc(), Sale.id.desc()).limit(limit).all()
