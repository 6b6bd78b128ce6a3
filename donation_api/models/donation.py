"""Donation model.

The reconciled entity. donations.status is the single source of truth for
whether money was collected; every handler reads and writes this table.

Status only moves forward through provider-driven events:
pending -> approved -> confirmed -> refunded, or -> failed.
"""

import uuid

from donation_api.extensions import db


class Donation(db.Model):
    __tablename__ = "donations"

    # -- Valid statuses --
    STATUSES = ["pending", "approved", "confirmed", "refunded", "failed"]

    # Rows written by the old Portuguese admin screens use "confirmado".
    CONFIRMED_STATUSES = ("confirmed", "confirmado")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    campaign_id = db.Column(
        db.String(36), db.ForeignKey("campaigns.id"), nullable=True, index=True
    )
    project_id = db.Column(db.String(100), nullable=True)  # raw slug, legacy UI
    user_id = db.Column(db.String(36), nullable=True)  # null = anonymous visitor

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    status = db.Column(
        db.String(20), nullable=False, default="pending", index=True
    )  # pending | approved | confirmed | refunded | failed

    provider = db.Column(db.String(20), nullable=False, default="paypal")
    payment_method = db.Column(db.String(20), nullable=False, default="paypal")
    provider_order_id = db.Column(db.String(64), nullable=True, index=True)
    provider_capture_id = db.Column(db.String(64), nullable=True, index=True)

    # --- Donor snapshot (redacted when anonymous) ---
    donor_name = db.Column(db.String(255), nullable=True)
    donor_email = db.Column(db.String(255), nullable=True)
    is_anonymous = db.Column(db.Boolean, nullable=False, default=False)
    message = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Relationships ---
    campaign = db.relationship("Campaign", back_populates="donations")

    @property
    def is_confirmed(self):
        return self.status in self.CONFIRMED_STATUSES

    def __repr__(self):
        return f"<Donation {self.id} {self.amount} {self.currency} ({self.status})>"
