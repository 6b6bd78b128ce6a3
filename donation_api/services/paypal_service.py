"""PayPal service — OAuth2 token cache and authenticated REST calls.

Responsible for:
- Client-credentials token exchange, cached in memory until 30s before expiry
- A generic authenticated request primitive (paypal_fetch)
- The three calls the donation flow makes: create order, capture order,
  verify webhook signature

The token cache is process-wide: built on first use, shared by every request
thread (guarded by _token_lock) and never torn down. A restart or
reset_token_cache() forces a fresh exchange.
"""

import json
import logging
import threading
import time

import requests
from flask import current_app

from donation_api.config import ConfigError

logger = logging.getLogger(__name__)

PAYPAL_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

# Refresh this many seconds before PayPal says the token expires.
TOKEN_REFRESH_MARGIN = 30

SIGNATURE_HEADERS = {
    "paypal-auth-algo": "auth_algo",
    "paypal-cert-url": "cert_url",
    "paypal-transmission-id": "transmission_id",
    "paypal-transmission-sig": "transmission_sig",
    "paypal-transmission-time": "transmission_time",
}


class PaypalError(Exception):
    """PayPal answered with a non-2xx status."""

    def __init__(self, status_code, body, message=None):
        self.status_code = status_code
        self.body = body
        if message is None:
            text = body if isinstance(body, str) else json.dumps(body)
            message = f"PayPal API error {status_code}: {text}"
        super().__init__(message)


# ──────────────────────────────────────────────
# Token cache
# ──────────────────────────────────────────────

_token_lock = threading.Lock()
_cached_token: dict = {}  # {"token": str, "expires_at": epoch seconds}


def reset_token_cache():
    """Drop the cached token so the next call performs a new exchange."""
    global _cached_token
    with _token_lock:
        _cached_token = {}


def get_base_url():
    """Return the REST base URL for PAYPAL_ENV (anything but 'live' is sandbox)."""
    env = (current_app.config.get("PAYPAL_ENV") or "sandbox").lower()
    if env == "live":
        return PAYPAL_BASE_URLS["live"]
    return PAYPAL_BASE_URLS["sandbox"]


def _timeout():
    return current_app.config.get("PAYPAL_HTTP_TIMEOUT", 30)


def _is_success(resp):
    # resp.ok also accepts 1xx and 3xx
    return 200 <= resp.status_code < 300


def _fetch_access_token():
    """Exchange client id/secret for a bearer token.

    Returns the decoded token response ({access_token, expires_in, ...}).
    Raises ConfigError when credentials are missing, PaypalError on non-2xx.
    """
    client_id = current_app.config.get("PAYPAL_CLIENT_ID")
    client_secret = current_app.config.get("PAYPAL_CLIENT_SECRET")

    if not client_id or not client_secret:
        raise ConfigError(
            "PayPal credentials are missing. Set PAYPAL_CLIENT_ID and PAYPAL_CLIENT_SECRET."
        )

    resp = requests.post(
        f"{get_base_url()}/v1/oauth2/token",
        auth=(client_id, client_secret),
        headers={"Accept": "application/json"},
        data={"grant_type": "client_credentials"},
        timeout=_timeout(),
    )

    if not _is_success(resp):
        raise PaypalError(
            resp.status_code,
            resp.text,
            f"Failed to obtain PayPal token: {resp.status_code} {resp.text}",
        )

    return resp.json()


def get_access_token():
    """Return a bearer token, reusing the cached one while it is still fresh."""
    global _cached_token

    with _token_lock:
        now = time.time()
        if _cached_token and _cached_token["expires_at"] > now + TOKEN_REFRESH_MARGIN:
            return _cached_token["token"]

        token_response = _fetch_access_token()
        _cached_token = {
            "token": token_response["access_token"],
            "expires_at": now + int(token_response.get("expires_in", 0)),
        }
        logger.info(
            f"Obtained PayPal access token (expires in {token_response.get('expires_in')}s)"
        )
        return _cached_token["token"]


# ──────────────────────────────────────────────
# Requests
# ──────────────────────────────────────────────

def paypal_fetch(path, method="GET", headers=None, body=None):
    """Send an authenticated request to the PayPal REST API.

    Args:
        path:    API path, e.g. "/v2/checkout/orders".
        method:  HTTP method.
        headers: Extra headers, merged over the defaults.
        body:    str sent as-is, anything else JSON-encoded. None sends no body.

    Returns the decoded JSON body, or the raw text for non-JSON responses.
    Raises PaypalError on any non-2xx status.
    """
    token = get_access_token()

    request_headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }
    if headers:
        request_headers.update(headers)

    data = None
    if body is not None:
        data = body if isinstance(body, str) else json.dumps(body)

    resp = requests.request(
        method,
        f"{get_base_url()}{path}",
        headers=request_headers,
        data=data,
        timeout=_timeout(),
    )

    content_type = resp.headers.get("content-type") or ""
    if "application/json" in content_type:
        payload = resp.json()
    else:
        payload = resp.text

    if not _is_success(resp):
        raise PaypalError(resp.status_code, payload)

    return payload


def create_order(payload):
    """POST /v2/checkout/orders. Returns the order resource."""
    return paypal_fetch("/v2/checkout/orders", method="POST", body=payload)


def capture_order(order_id):
    """POST /v2/checkout/orders/{id}/capture. Returns the captured order."""
    return paypal_fetch(
        f"/v2/checkout/orders/{order_id}/capture", method="POST", body={}
    )


def verify_webhook_signature(signature_headers, webhook_id, event):
    """Ask PayPal whether a webhook delivery is authentic.

    Args:
        signature_headers: the five paypal-* transmission headers, keyed by
                           their lower-case header names.
        webhook_id:        our webhook id from the PayPal dashboard.
        event:             the parsed event envelope, exactly as received.

    Returns PayPal's verification_status ("SUCCESS" or "FAILURE"), or None.
    """
    body = {
        field: signature_headers[header]
        for header, field in SIGNATURE_HEADERS.items()
    }
    body["webhook_id"] = webhook_id
    body["webhook_event"] = event

    result = paypal_fetch(
        "/v1/notifications/verify-webhook-signature", method="POST", body=body
    )
    if isinstance(result, dict):
        return result.get("verification_status")
    return None
