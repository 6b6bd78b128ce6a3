"""Order service — pending donation + PayPal order creation.

Flow for POST /api/paypal/create-order:
  1. Validate the body (ValidationError -> 400)
  2. Resolve the campaign, seeding it from a project if needed (404 if neither)
  3. Insert a `pending` donation
  4. Create the PayPal order, correlated by custom_id = donation id
  5. Store the order id on the donation

If anything after step 3 fails, the donation is marked `failed` before the
error is surfaced. That write is best effort; donations stranded by a crash
are picked up by sweep_stale_pending().
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

import bleach
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from donation_api.errors import (
    NotFoundError,
    PaymentFlowError,
    UpstreamResponseError,
    ValidationError,
)
from donation_api.models.donation import Donation
from donation_api.services import paypal_service
from donation_api.services.campaign_service import get_or_create_campaign
from donation_api.services.datastore import get_privileged_client

logger = logging.getLogger(__name__)

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
CENTS = Decimal("0.01")
MAX_AMOUNT = Decimal("9999999999.99")  # donations.amount is Numeric(12, 2)


def _sanitize(text, max_length=None):
    """Strip all HTML tags from donor input. Non-strings become None."""
    if not isinstance(text, str):
        return None
    cleaned = bleach.clean(text, tags=[], strip=True).strip()
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned or None


def parse_amount(value):
    """Parse a number or numeric string into a positive Decimal, else None.

    The result is rounded to cents; anything that rounds to zero, overflows
    the amount column or is not finite is rejected.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    try:
        amount = Decimal(value.strip())
        if not amount.is_finite():
            return None
        amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None
    if amount <= 0 or amount > MAX_AMOUNT:
        return None
    return amount


def parse_order_request(data):
    """Validate a create-order body.

    Returns a dict with slug, amount, currency, donor, user_id.
    Raises ValidationError with a client-facing message.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid campaign or amount")

    slug = data.get("campaignSlug")
    amount = parse_amount(data.get("amount"))

    if not isinstance(slug, str) or not slug.strip() or amount is None:
        raise ValidationError("Invalid campaign or amount")

    currency = str(data.get("currency") or "USD").strip().upper()
    if not CURRENCY_RE.match(currency):
        raise ValidationError("Invalid currency")

    donor = data.get("donor")
    if not isinstance(donor, dict):
        donor = {}

    user_id = data.get("userId")

    return {
        "slug": slug.strip(),
        "amount": amount,
        "currency": currency,
        "donor": donor,
        "user_id": str(user_id) if user_id else None,
    }


def donor_snapshot(donor):
    """Build the donor_* columns. Anonymous donors keep only a placeholder name."""
    is_anonymous = bool(donor.get("isAnonymous"))
    if is_anonymous:
        name = current_app.config.get("ANONYMOUS_DONOR_NAME", "Anônimo")
        email = None
    else:
        name = _sanitize(donor.get("name"), max_length=255)
        email = _sanitize(donor.get("email"), max_length=255)

    return {
        "donor_name": name,
        "donor_email": email,
        "is_anonymous": is_anonymous,
        "message": _sanitize(donor.get("message"), max_length=5000),
    }


def build_order_payload(donation_id, slug, amount, currency):
    """PayPal Orders v2 body for a single donation."""
    return {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "amount": {
                    "currency_code": currency,
                    "value": str(amount.quantize(CENTS, rounding=ROUND_HALF_UP)),
                },
                "custom_id": donation_id,
                "reference_id": slug,
            }
        ],
        "application_context": {
            "shipping_preference": "NO_SHIPPING",
            "user_action": "PAY_NOW",
        },
    }


def _mark_failed(store, donation_id):
    """Compensating write after a failed order. Logged, never retried."""
    try:
        store.rollback()
        store.update_donations({"id": donation_id}, {"status": "failed"})
        logger.warning(f"Donation {donation_id} marked failed after order error")
    except Exception as e:
        logger.error(f"Could not mark donation {donation_id} as failed: {e}")


def create_donation_order(data):
    """Create a pending donation and its PayPal order.

    Returns {"orderID": ..., "donationId": ...}.
    Raises ValidationError (400), NotFoundError (404), UpstreamResponseError (502),
    PaymentFlowError / PaypalError / anything else (500).
    """
    order_request = parse_order_request(data)
    slug = order_request["slug"]
    amount = order_request["amount"]
    currency = order_request["currency"]

    store = get_privileged_client()

    campaign = get_or_create_campaign(store, slug, currency)
    if campaign is None:
        raise NotFoundError("Campaign not found or inactive")

    try:
        donation = store.insert_donation(
            campaign_id=campaign.id,
            project_id=slug,  # legacy UI still reads donations by project slug
            user_id=order_request["user_id"],
            amount=amount,
            currency=currency,
            status="pending",
            provider="paypal",
            payment_method="paypal",
            **donor_snapshot(order_request["donor"]),
        )
    except SQLAlchemyError as e:
        store.rollback()
        logger.error(f"Donation insert failed for campaign '{slug}': {e}")
        raise PaymentFlowError("Failed to create donation record")

    donation_id = donation.id if donation is not None else None
    if not donation_id:
        raise PaymentFlowError("Failed to create donation record")

    try:
        order = paypal_service.create_order(
            build_order_payload(donation_id, slug, amount, currency)
        )
        order_id = order.get("id") if isinstance(order, dict) else None
        if not order_id:
            raise UpstreamResponseError("PayPal did not return an order ID")

        store.update_donations({"id": donation_id}, {"provider_order_id": order_id})
    except Exception:
        _mark_failed(store, donation_id)
        raise

    logger.info(
        f"Created PayPal order {order_id} for donation {donation_id} "
        f"({amount} {currency} -> {slug})"
    )
    return {"orderID": order_id, "donationId": donation_id}


# ──────────────────────────────────────────────
# Stale pending sweep
# ──────────────────────────────────────────────

def find_stale_pending(older_than_minutes):
    """Pending, never-captured donations created before the cutoff."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    return (
        Donation.query
        .filter(Donation.status == "pending")
        .filter(Donation.provider_capture_id.is_(None))
        .filter(Donation.created_at < cutoff)
        .order_by(Donation.created_at.asc())
        .all()
    )


def sweep_stale_pending(older_than_minutes, dry_run=False):
    """Mark stale pending donations as failed.

    Each update is conditional on the row still being `pending`, so a capture
    that lands mid-sweep wins. Returns the ids that were (or would be) failed.
    """
    store = get_privileged_client()
    stale = find_stale_pending(older_than_minutes)
    swept = []

    for donation in stale:
        if dry_run:
            swept.append(donation.id)
            continue
        count = store.update_donations(
            {"id": donation.id, "status": "pending"}, {"status": "failed"}
        )
        if count:
            swept.append(donation.id)

    logger.info(
        f"Stale pending sweep: {len(swept)} of {len(stale)} donation(s) "
        f"{'would be ' if dry_run else ''}marked failed"
    )
    return swept
