"""PayPal blueprint — /api/paypal/*

JSON API used by the donation page's PayPal button, plus the PayPal webhook.

Route Map:
  POST /api/paypal/create-order   — pending donation + PayPal order
  POST /api/paypal/capture-order  — capture an approved order, confirm donation
  POST /api/paypal/webhook        — PayPal event callbacks (signature verified)

Any other method gets a JSON 405 with an Allow header (see create_app).
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from donation_api.decorators import json_errors
from donation_api.errors import ValidationError
from donation_api.extensions import limiter
from donation_api.services.capture_service import capture_donation_order
from donation_api.services.order_service import create_donation_order
from donation_api.services.webhook_service import handle_webhook

logger = logging.getLogger(__name__)

paypal_bp = Blueprint("paypal", __name__, url_prefix="/api/paypal")


def _read_json():
    """Return the decoded JSON body; {} for an empty body.

    Raises ValidationError for a body that is not valid JSON.
    """
    data = request.get_json(force=True, silent=True)
    if data is None:
        if request.get_data():
            raise ValidationError("Invalid JSON body")
        return {}
    return data


def _create_order_limit():
    return current_app.config.get("RATE_LIMIT_CREATE_ORDER", "30 per hour")


@paypal_bp.route("/create-order", methods=["POST"], provide_automatic_options=False)
@limiter.limit(_create_order_limit)
@json_errors("Error creating PayPal order")
def create_order():
    """
    Create a pending donation and the PayPal order that pays for it.

    Expects: { campaignSlug, amount, currency?, donor?, userId? }
    Returns: { orderID, donationId }
    """
    result = create_donation_order(_read_json())
    return jsonify(result), 200


@paypal_bp.route("/capture-order", methods=["POST"], provide_automatic_options=False)
@json_errors("Error capturing PayPal order")
def capture_order():
    """
    Capture a buyer-approved order and confirm its donation.

    Expects: { orderID }
    Returns: { ok: true, status, captureId }
    """
    data = _read_json()
    order_id = data.get("orderID") if isinstance(data, dict) else None
    result = capture_donation_order(order_id)
    return jsonify(result), 200


@paypal_bp.route("/webhook", methods=["POST"], provide_automatic_options=False)
@json_errors("Error processing PayPal webhook")
def webhook():
    """Receive a PayPal webhook event.

    1. Get raw body (forwarded untouched to PayPal for verification)
    2. Require the paypal-* transmission headers
    3. Verify with PayPal's verify-webhook-signature API
    4. Apply the donation transition (idempotent)
    5. Return 200 so PayPal stops retrying
    """
    status = handle_webhook(request.get_data(as_text=True), request.headers)
    logger.info(f"PayPal webhook {status}")
    return jsonify(ok=True), 200
