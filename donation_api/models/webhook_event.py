"""Webhook event model (delivery log).

Every verified PayPal webhook that carries an event id is recorded here after
it has been dispatched. A redelivery of a recorded id is acknowledged without
touching donations again. The per-donation capture-id guards still apply to
events that arrive under a different id.
"""

import uuid

from donation_api.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    provider_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "WH-2WR32451HC0233532-67976317FL4543714"
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "PAYMENT.CAPTURE.COMPLETED"
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<WebhookEvent {self.provider_event_id} ({self.event_type})>"
