# Overview: Service-layer operations for the catalog; resolves free-text product, customer and payment-method names.

"""
Catalog Resolver

WHY: The oracle hands us names as the user said them ("empanadas",
"mp", "con QR"). Before anything is written, those names must become
rows the tenant owns.

RULES:
- Products: exact case-insensitive match within the tenant, otherwise
  auto-create. Never fails: the sale happened, so the product must exist.
- Payment methods: exact name, then synonym table, then substring
  containment. Returns None rather than guessing; ambiguous substring
  matches (e.g. "tarjeta" against debit AND credit) also return None.
- Customers: case-insensitive match, created on first mention.
"""

from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConcurrencyConflict
from ..extensions import db
from ..models import Customer, PaymentMethod, Product
from .price_service import get_current_price

logger = logging.getLogger(__name__)


# Default global payment methods (tenant_id NULL)
DEFAULT_PAYMENT_METHODS = [
    "Efectivo",
    "MercadoPago",
    "Billetera Digital",
    "Tarjeta de Débito",
    "Tarjeta de Crédito",
    "Transferencia",
]

# Slang/abbreviation -> canonical substring of a payment method name.
# Keys and values are in normalized form (lowercase, no accents).
PAYMENT_METHOD_SYNONYMS = {
    "mp": "mercadopago",
    "mercado pago": "mercadopago",
    "mercadopago": "mercadopago",
    "efectivo": "efectivo",
    "cash": "efectivo",
    "plata": "efectivo",
    "contado": "efectivo",
    "tarjeta": "tarjeta",
    "card": "tarjeta",
    "debito": "debito",
    "tarjeta de debito": "debito",
    "debit": "debito",
    "credito": "credito",
    "tarjeta de credito": "credito",
    "credit": "credito",
    "qr": "billetera digital",
    "codigo qr": "billetera digital",
    "el qr": "billetera digital",
    "billetera": "billetera digital",
    "billetera digital": "billetera digital",
    "billetera virtual": "billetera digital",
    "transferencia": "transferencia",
    "transferencia bancaria": "transferencia",
    "transfer": "transferencia",
    "bank transfer": "transferencia",
}

_LEADING_FILLERS = ("con ", "en ", "por ", "via ", "with ", "by ", "in ")


def normalize_name(value: str | None) -> str:
    """Casefold and collapse whitespace. Used for product/customer name keys."""
    if not value:
        return ""
    return " ".join(value.split()).casefold()


def fold_text(value: str | None) -> str:
    """normalize_name plus accent stripping, for payment phrase matching."""
    text = normalize_name(value)
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _strip_fillers(phrase: str) -> str:
    for filler in _LEADING_FILLERS:
        if phrase.startswith(filler):
            return phrase[len(filler):].strip()
    return phrase


@dataclass(frozen=True)
class ProductRef:
    id: int
    name: str
    auto_created: bool
    created: bool


@dataclass
class CatalogSnapshot:
    """Tenant catalog as embedded into the extraction prompt."""
    products: list[dict] = field(default_factory=list)
    payment_methods: list[dict] = field(default_factory=list)

    @property
    def payment_method_names(self) -> list[str]:
        return [m["name"] for m in self.payment_methods]


# =============================================================================
# PRODUCTS
# =============================================================================

def find_product(tenant_id: int, name: str) -> Optional[Product]:
    key = normalize_name(name)
    if not key:
        return None
    return (
        db.session.query(Product)
        .filter_by(tenant_id=tenant_id, name_key=key)
        .first()
    )


def resolve_product(tenant_id: int, name: str) -> ProductRef:
    """
    Resolve a free-text product name to a tenant product, creating it if needed.

    Does not commit; the caller owns the transaction. Resolving the same
    name twice in a tenant yields the same product id.

    Raises:
        ConcurrencyConflict: a concurrent writer created the same name first.
            The sale writer retries its whole transaction once on this.
    """
    display = " ".join((name or "").split())
    if not display:
        raise ValueError("Product name is required")

    existing = find_product(tenant_id, display)
    if existing:
        return ProductRef(
            id=existing.id,
            name=existing.name,
            auto_created=existing.auto_created,
            created=False,
        )

    product = Product(
        tenant_id=tenant_id,
        name=display,
        name_key=normalize_name(display),
        description="Auto-created from sale",
        is_available=True,
        auto_created=True,
    )
    db.session.add(product)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConcurrencyConflict(
            "Product was created concurrently",
            details={"product_name": display},
        ) from exc

    logger.info("Auto-created product %r (id=%s) for tenant %s", display, product.id, tenant_id)
    return ProductRef(id=product.id, name=product.name, auto_created=True, created=True)


def create_product(tenant_id: int, name: str, description: str | None = None) -> Product:
    """
    Explicit catalog registration (auto_created=False). Does not commit.

    Raises:
        ValueError: blank name, or the tenant already has a product with
            that name (case-insensitive).
    """
    display = " ".join((name or "").split())
    if not display:
        raise ValueError("Product name is required")
    if find_product(tenant_id, display) is not None:
        raise ValueError(f"Product '{display}' already exists")

    product = Product(
        tenant_id=tenant_id,
        name=display,
        name_key=normalize_name(display),
        description=description,
        is_available=True,
        auto_created=False,
    )
    db.session.add(product)
    db.session.flush()
    return product


def get_product(tenant_id: int, product_id: int) -> Optional[Product]:
    return (
        db.session.query(Product)
        .filter_by(id=product_id, tenant_id=tenant_id)
        .first()
    )


def list_products(tenant_id: int, available_only: bool = True) -> list[Product]:
    query = db.session.query(Product).filter_by(tenant_id=tenant_id)
    if available_only:
        query = query.filter_by(is_available=True)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


# =============================================================================
# PAYMENT METHODS
# =============================================================================

def list_payment_methods(tenant_id: int | None) -> list[PaymentMethod]:
    """Global methods plus the tenant's own, active only, ordered by name."""
    query = db.session.query(PaymentMethod).filter(PaymentMethod.is_active.is_(True))
    if tenant_id is None:
        query = query.filter(PaymentMethod.tenant_id.is_(None))
    else:
        query = query.filter(
            or_(PaymentMethod.tenant_id.is_(None), PaymentMethod.tenant_id == tenant_id)
        )
    return query.order_by(PaymentMethod.name.asc(), PaymentMethod.id.asc()).all()


def ensure_default_payment_methods() -> list[PaymentMethod]:
    """
    Seed the global payment methods.

    Safe to call repeatedly (idempotent). Does not commit.
    """
    existing = {
        m.name: m
        for m in db.session.query(PaymentMethod).filter(PaymentMethod.tenant_id.is_(None)).all()
    }
    methods = []
    for name in DEFAULT_PAYMENT_METHODS:
        method = existing.get(name)
        if method is None:
            method = PaymentMethod(tenant_id=None, name=name, is_active=True)
            db.session.add(method)
        methods.append(method)
    db.session.flush()
    return methods


def _unique_match(candidates: list) -> Optional[object]:
    if len(candidates) == 1:
        return candidates[0]
    return None


def resolve_payment_method(phrase: str | None, available_methods: Sequence) -> Optional[object]:
    """
    Resolve a free-text payment phrase to one of available_methods.

    Matching priority:
    1. exact case/accent-insensitive name equality
    2. synonym table -> canonical substring -> unique method containing it
    3. substring containment either direction, unique match only

    Returns None if no rule yields exactly one method.
    """
    if not phrase:
        return None
    needle = fold_text(phrase)
    if not needle:
        return None

    folded = [(method, fold_text(method.name)) for method in available_methods]

    for method, name in folded:
        if name == needle:
            return method

    stripped = _strip_fillers(needle)
    canonical = PAYMENT_METHOD_SYNONYMS.get(needle) or PAYMENT_METHOD_SYNONYMS.get(stripped)
    if canonical:
        match = _unique_match([m for m, name in folded if canonical in name])
        if match is not None:
            return match

    for candidate in dict.fromkeys((needle, stripped)):
        if not candidate:
            continue
        match = _unique_match([
            m for m, name in folded
            if candidate in name or name in candidate
        ])
        if match is not None:
            return match

    logger.info("Payment phrase %r matched no single payment method", phrase)
    return None


# =============================================================================
# CUSTOMERS
# =============================================================================

def get_or_create_customer(tenant_id: int, name: str | None) -> Optional[Customer]:
    """Case-insensitive customer lookup; creates on first mention. Does not commit."""
    key = normalize_name(name)
    if not key:
        return None

    customer = (
        db.session.query(Customer)
        .filter_by(tenant_id=tenant_id, name_key=key)
        .first()
    )
    if customer:
        return customer

    customer = Customer(tenant_id=tenant_id, name=" ".join(name.split()), name_key=key)
    db.session.add(customer)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConcurrencyConflict(
            "Customer was created concurrently",
            details={"customer_name": name},
        ) from exc
    return customer


def get_customer(tenant_id: int, customer_id: int) -> Optional[Customer]:
    return (
        db.session.query(Customer)
        .filter_by(id=customer_id, tenant_id=tenant_id)
        .first()
    )


# =============================================================================
# SNAPSHOT
# =============================================================================

def catalog_snapshot(tenant_id: int, products: Iterable[Product] | None = None) -> CatalogSnapshot:
    """Products (with current price) and payment methods for prompt building."""
    if products is None:
        products = list_products(tenant_id, available_only=True)

    return CatalogSnapshot(
        products=[
            {
                "id": p.id,
                "name": p.name,
                "current_price_cents": get_current_price(p.id),
            }
            for p in products
        ],
        payment_methods=[
            {"id": m.id, "name": m.name}
            for m in list_payment_methods(tenant_id)
        ],
    )
