from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data and credit account.

    balance is what the customer owes the store: it grows when the store
    extends credit (credit sale, bounced check) and shrinks on repayment.
    It may go negative (store credit / overpayment).

    authorized_credit_limit <= 0 means "no limit". Otherwise every charge must
    keep balance <= authorized_credit_limit; the check and the write happen in
    one conditional UPDATE (see services/credit_service.py).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_store_name", "store_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    balance = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    authorized_credit_limit = db.Column(db.Numeric(14, 4), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("customers", lazy=True))

    @property
    def available_credit(self):
        if self.authorized_credit_limit <= 0:
            return None
        return self.authorized_credit_limit - self.balance

    def to_dict(self) -> dict:
        available = self.available_credit
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "tax_id": self.tax_id,
            "notes": self.notes,
            "balance": float(self.balance),
            "authorized_credit_limit": float(self.authorized_credit_limit),
            "available_credit": float(available) if available is not None else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
