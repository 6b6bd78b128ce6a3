"""Campaign model.

A fundraising target addressed by a stable slug. Created lazily on the first
donation to a slug and never deleted by the payment flow.
"""

import uuid

from donation_api.extensions import db


class Campaign(db.Model):
    __tablename__ = "campaigns"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    slug = db.Column(db.String(100), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    goal_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    donations = db.relationship(
        "Donation", back_populates="campaign", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Campaign {self.slug} (active={self.active})>"
