from __future__ import annotations

from ..extensions import db
from charla.time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every business account is a Tenant.

    WHY: Shared-database multi-tenancy with strict isolation.
    Products, customers, tenant-specific payment methods and sales all
    carry tenant_id, and every query filters on it. This is the sole
    authorization boundary of the engine (row-level ownership).

    The tenant row doubles as the per-tenant serialization point for
    daily sale ordinals (locked FOR UPDATE while a sale is created).
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    business_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    # Calendar days (daily ordinals) are computed in this timezone
    timezone = db.Column(db.String(64), nullable=False, default="UTC")

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "business_name": self.business_name,
            "email": self.email,
            "timezone": self.timezone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
