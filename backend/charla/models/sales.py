from __future__ import annotations

from ..extensions import db
from charla.time_utils import to_utc_z


class Sale(db.Model):
    """
    Sale header: the top-level transaction record, owns lines and payments.

    LIFECYCLE:
    - Created together with its lines and payments in one transaction.
    - Editable (total, customer, note, occurred_at, is_incomplete) until voided.
    - Voided by cancellation, never hard-deleted. Voided sales are immutable.

    DAILY NUMBER:
    Per-tenant, per-calendar-day ordinal ("the 2nd sale today"), assigned
    at creation and never reused. business_date is the tenant-local
    calendar day the ordinal belongs to; it does not move if occurred_at
    is edited later.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "business_date", "daily_number", name="uq_sales_tenant_day_number"),
        db.Index("ix_sales_tenant_occurred", "tenant_id", "occurred_at"),
        db.Index("ix_sales_tenant_voided", "tenant_id", "is_voided"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    daily_number = db.Column(db.Integer, nullable=False)
    business_date = db.Column(db.Date, nullable=False)

    # Business time of the sale (UTC-naive)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)

    total_cents = db.Column(db.BigInteger, nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    note = db.Column(db.String(500), nullable=True)

    is_incomplete = db.Column(db.Boolean, nullable=False, default=False)
    is_voided = db.Column(db.Boolean, nullable=False, default=False)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_children: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "daily_number": self.daily_number,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "occurred_at": to_utc_z(self.occurred_at),
            "total_cents": self.total_cents,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "note": self.note,
            "is_incomplete": self.is_incomplete,
            "is_voided": self.is_voided,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_children:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleLine(db.Model):
    """
    Line item on a sale.

    product_id is NULL only when product resolution was deferred; the
    literal name as spoken is always kept in product_label.
    quantity may be fractional (bulk goods). line_total_cents is
    unit_price_cents * quantity rounded half-up to the cent.
    """
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    product_label = db.Column(db.String(255), nullable=False)
    presentation = db.Column(db.String(120), nullable=True)  # "docena", "caja", ...

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    line_total_cents = db.Column(db.BigInteger, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_label": self.product_label,
            "presentation": self.presentation,
            "quantity": format(self.quantity.normalize(), "f") if self.quantity is not None else None,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class SalePayment(db.Model):
    """
    Payment recorded against a sale (split payments = several rows).

    INVARIANT: sum(amount_cents) over a sale's payments equals its total
    at creation time. payment_method_id is never NULL: an unresolved
    payment phrase fails the whole sale instead.
    """
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=False, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="SalePayment.id"))
    payment_method = db.relationship("PaymentMethod")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "payment_method_id": self.payment_method_id,
            "payment_method": self.payment_method.name if self.payment_method else None,
            "amount_cents": self.amount_cents,
        }
