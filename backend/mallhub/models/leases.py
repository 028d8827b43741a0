from __future__ import annotations

from ..extensions import db
from mallhub.time_utils import to_utc_z


# Lease period codes -> months covered
PERIOD_MONTHLY = "monthly"
PERIOD_QUARTERLY = "quarterly"
PERIOD_YEARLY = "yearly"

PERIOD_MONTHS = {
    PERIOD_MONTHLY: 1,
    PERIOD_QUARTERLY: 3,
    PERIOD_YEARLY: 12,
}


class LeasePayment(db.Model):
    """
    Rent payment made by a shop for its box.

    This is a ledger entry, not money movement. period_end is derived from
    paid_at and period. A shop's lease status is computed on read from its
    payment with the latest period_end; it is never stored.
    """
    __tablename__ = "lease_payments"
    __table_args__ = (
        db.Index("ix_lease_payments_shop_period_end", "shop_id", "period_end"),
        db.CheckConstraint("amount_cents >= 0", name="ck_lease_payments_amount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    period = db.Column(db.String(16), nullable=False, default=PERIOD_MONTHLY)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)
    period_end = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shop = db.relationship("Shop", backref=db.backref("lease_payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "amount_cents": self.amount_cents,
            "period": self.period,
            "paid_at": to_utc_z(self.paid_at),
            "period_end": to_utc_z(self.period_end),
            "created_at": to_utc_z(self.created_at),
        }
