"""Webhook service — PayPal event verification and donation state transitions.

Responsible for:
- Rejecting deliveries without the five PayPal transmission headers
- Verifying every delivery with PayPal's verify-webhook-signature API
- Skipping redeliveries already recorded in webhook_events
- Dispatching to event-specific handlers

Nothing touches the donations table until PayPal has answered SUCCESS.
"""

import json
import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from donation_api.config import ConfigError
from donation_api.errors import ValidationError
from donation_api.extensions import db
from donation_api.models.webhook_event import WebhookEvent
from donation_api.services import paypal_service
from donation_api.services.datastore import get_privileged_client

logger = logging.getLogger(__name__)


def parse_event(raw_body):
    """Decode the raw request body into an event envelope dict."""
    if not raw_body:
        return {}
    try:
        event = json.loads(raw_body)
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(event, dict):
        raise ValidationError("Invalid JSON body")
    return event


def read_signature_headers(headers):
    """Collect the PayPal transmission headers.

    Raises ValidationError if any of them is missing or empty.
    """
    collected = {}
    for name in paypal_service.SIGNATURE_HEADERS:
        value = headers.get(name)
        if not value:
            raise ValidationError("Missing PayPal signature headers")
        collected[name] = value
    return collected


def _related_order_id(resource):
    supplementary = resource.get("supplementary_data") or {}
    related = supplementary.get("related_ids") or {}
    return related.get("order_id")


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_order_approved(store, resource):
    """CHECKOUT.ORDER.APPROVED -> approved.

    Only pending donations move; a late approval never drags a confirmed
    donation backwards.
    """
    order_id = resource.get("id") or _related_order_id(resource)
    if not order_id:
        logger.warning("ORDER.APPROVED without an order id, ignoring")
        return

    store.update_donations(
        {"provider_order_id": order_id, "status": "pending"},
        {"status": "approved"},
    )


def _handle_capture_completed(store, resource):
    """PAYMENT.CAPTURE.COMPLETED -> confirmed.

    Looks the donation up by order id, then capture id, then custom_id (our
    donation id), first match wins. Already confirmed with this capture id
    means the capture endpoint got there first: nothing to do.
    """
    capture_id = resource.get("id")
    order_id = _related_order_id(resource)
    custom_id = resource.get("custom_id")

    if not (capture_id or order_id or custom_id):
        logger.warning("CAPTURE.COMPLETED without any correlation id, ignoring")
        return

    donation = store.find_donation(
        {"provider_order_id": order_id},
        {"provider_capture_id": capture_id},
        {"id": custom_id},
    )

    if donation is not None and donation.provider_capture_id == capture_id:
        if donation.is_confirmed:
            logger.info(
                f"Capture {capture_id} already confirmed on donation {donation.id}, skipping"
            )
            return
        if donation.status == "refunded":
            logger.info(
                f"Capture {capture_id} on donation {donation.id} was already refunded, skipping"
            )
            return

    if donation is not None:
        match = {"id": donation.id}
    elif capture_id:
        match = {"provider_capture_id": capture_id}
    elif order_id:
        match = {"provider_order_id": order_id}
    else:
        match = {"id": custom_id}

    store.update_donations(match, {
        "status": "confirmed",
        "provider_capture_id": capture_id or (donation.provider_capture_id if donation else None),
        "confirmed_at": datetime.now(timezone.utc),
    })


def _handle_capture_refunded(store, resource):
    """PAYMENT.CAPTURE.REFUNDED -> refunded."""
    capture_id = resource.get("id")
    if capture_id:
        store.update_donations(
            {"provider_capture_id": capture_id}, {"status": "refunded"}
        )


def _handle_capture_failed(store, resource):
    """PAYMENT.CAPTURE.DENIED / PAYMENT.CAPTURE.FAILED -> failed."""
    capture_id = resource.get("id")
    if capture_id:
        store.update_donations(
            {"provider_capture_id": capture_id}, {"status": "failed"}
        )


EVENT_HANDLERS = {
    "CHECKOUT.ORDER.APPROVED": _handle_order_approved,
    "PAYMENT.CAPTURE.COMPLETED": _handle_capture_completed,
    "PAYMENT.CAPTURE.REFUNDED": _handle_capture_refunded,
    "PAYMENT.CAPTURE.DENIED": _handle_capture_failed,
    "PAYMENT.CAPTURE.FAILED": _handle_capture_failed,
}


# ──────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────

def _record_event(event_id, event_type):
    """Remember a dispatched event id. A concurrent duplicate is harmless."""
    db.session.add(WebhookEvent(
        provider_event_id=event_id,
        event_type=event_type or "UNKNOWN",
    ))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Webhook event {event_id} was recorded concurrently")


def handle_webhook(raw_body, headers):
    """Verify and apply one PayPal webhook delivery.

    Returns a short status string ("processed" / "already_processed").
    Raises ConfigError (500) when no webhook id is configured, ValidationError
    (400) for a malformed body, missing headers or a failed verification.
    """
    webhook_id = current_app.config.get("PAYPAL_WEBHOOK_ID")
    if not webhook_id:
        raise ConfigError("PAYPAL_WEBHOOK_ID not configured")

    store = get_privileged_client()
    event = parse_event(raw_body)
    signature_headers = read_signature_headers(headers)

    status = paypal_service.verify_webhook_signature(
        signature_headers, webhook_id, event
    )
    if status != "SUCCESS":
        logger.warning(
            f"Webhook signature verification failed "
            f"(transmission {signature_headers['paypal-transmission-id']}): {status}"
        )
        raise ValidationError("Invalid webhook signature")

    event_id = event.get("id")
    event_type = event.get("event_type")

    # --- Idempotency check ---
    if event_id and WebhookEvent.query.filter_by(provider_event_id=event_id).first():
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return "already_processed"

    handler = EVENT_HANDLERS.get(event_type)
    if handler:
        resource = event.get("resource")
        handler(store, resource if isinstance(resource, dict) else {})
    else:
        logger.info(f"Ignoring webhook event type {event_type}")

    if event_id:
        _record_event(event_id, event_type)

    return "processed"
