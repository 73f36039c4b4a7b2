from __future__ import annotations

from ..extensions import db
from charla.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped to tenants via tenant_id.

    NAME MATCHING:
    name keeps the spelling the product was first registered with;
    name_key is the casefolded, whitespace-collapsed form and is unique per
    tenant. Lookups always go through name_key, so "Empanadas" and
    " empanadas " resolve to the same row.

    auto_created distinguishes products registered implicitly while
    recording a sale from explicitly catalogued ones.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name_key", name="uq_products_tenant_name_key"),
        db.Index("ix_products_tenant_available", "tenant_id", "is_available"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    name_key = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    is_available = db.Column(db.Boolean, nullable=False, default=True)
    auto_created = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "is_available": self.is_available,
            "auto_created": self.auto_created,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductPrice(db.Model):
    """
    Price history entry (append-only, closed rather than mutated).

    INVARIANT: at most one entry per product has valid_to IS NULL.
    Enforced by the partial unique index below and by price_service,
    which closes the open entry and opens the new one in one transaction.
    """
    __tablename__ = "product_prices"
    __table_args__ = (
        db.Index(
            "uq_product_prices_open",
            "product_id",
            unique=True,
            sqlite_where=db.text("valid_to IS NULL"),
            postgresql_where=db.text("valid_to IS NULL"),
        ),
        db.Index("ix_product_prices_product_from", "product_id", "valid_from"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    unit_price_cents = db.Column(db.BigInteger, nullable=False)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_to = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("Product", backref=db.backref("prices", lazy=True))

    def to_dict(self) -> dict:
        duration_days = None
        if self.valid_to is not None:
            seconds = (self.valid_to - self.valid_from).total_seconds()
            duration_days = int(-(-seconds // 86400))  # ceil
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_price_cents": self.unit_price_cents,
            "valid_from": to_utc_z(self.valid_from),
            "valid_to": to_utc_z(self.valid_to) if self.valid_to else None,
            "duration_days": duration_days,
        }


class PaymentMethod(db.Model):
    """
    Payment method catalog entry.

    tenant_id NULL means a global method offered to every tenant
    (Efectivo, MercadoPago, ...); tenants may add their own.
    Free-text payment phrases are resolved against these names.
    """
    __tablename__ = "payment_methods"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_payment_methods_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<PaymentMethod id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "is_active": self.is_active,
        }
