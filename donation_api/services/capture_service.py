"""Capture service — collect an approved PayPal order and confirm its donation.

Idempotent: if the donation for this order already carries the capture id
PayPal returned, nothing is written. The webhook path applies the same guard,
so whichever of the two arrives second becomes a no-op.
"""

import logging
from datetime import datetime, timezone

from donation_api.errors import UpstreamResponseError, ValidationError
from donation_api.services import paypal_service
from donation_api.services.datastore import get_privileged_client

logger = logging.getLogger(__name__)


def extract_capture(capture_response):
    """Pull (capture_id, custom_id) out of a captured order.

    Both live on the first purchase unit; either may be None.
    """
    if not isinstance(capture_response, dict):
        return None, None

    units = capture_response.get("purchase_units") or []
    unit = units[0] if units and isinstance(units[0], dict) else {}

    captures = (unit.get("payments") or {}).get("captures") or []
    capture_id = captures[0].get("id") if captures and isinstance(captures[0], dict) else None

    return capture_id, unit.get("custom_id")


def capture_donation_order(order_id):
    """Capture order_id at PayPal and mark its donation confirmed.

    Returns {"ok": True, "status": ..., "captureId": ...}.
    Raises ValidationError (400) for a missing order id, UpstreamResponseError (502)
    when PayPal returns no capture id, PaypalError and datastore errors (500).
    """
    if not order_id or not isinstance(order_id, str):
        raise ValidationError("orderID is required")

    store = get_privileged_client()

    capture_response = paypal_service.capture_order(order_id)
    capture_id, custom_id = extract_capture(capture_response)

    if not capture_id:
        raise UpstreamResponseError("Capture ID not found in PayPal response")

    existing = store.find_donation({"provider_order_id": order_id})

    if existing is not None and existing.provider_capture_id == capture_id:
        logger.info(
            f"Capture {capture_id} already recorded on donation {existing.id}, skipping"
        )
        return {"ok": True, "status": existing.status, "captureId": capture_id}

    if existing is not None:
        target = {"id": existing.id}
    elif custom_id:
        target = {"id": custom_id}
    else:
        target = {"provider_order_id": order_id}

    count = store.update_donations(target, {
        "status": "confirmed",
        "provider_capture_id": capture_id,
        "confirmed_at": datetime.now(timezone.utc),
    })

    if count == 0:
        logger.warning(
            f"Capture {capture_id} for order {order_id} matched no donation ({target})"
        )
    else:
        logger.info(f"Donation confirmed via capture {capture_id} (order {order_id})")

    return {"ok": True, "status": "confirmed", "captureId": capture_id}
