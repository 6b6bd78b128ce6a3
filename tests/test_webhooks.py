"""Tests for the PayPal webhook endpoint and event handling.

Covers:
- Transmission header check and signature verification (nothing written on failure)
- Missing PAYPAL_WEBHOOK_ID -> 500
- CHECKOUT.ORDER.APPROVED (pending donations only)
- PAYMENT.CAPTURE.COMPLETED, including the already-confirmed no-op
- PAYMENT.CAPTURE.REFUNDED / DENIED / FAILED
- Redelivered events (same event id) skipped
- Unknown event types acknowledged without changes
"""

import json
from types import SimpleNamespace
from unittest.mock import patch

from donation_api.extensions import db
from donation_api.models.donation import Donation
from donation_api.models.webhook_event import WebhookEvent
from donation_api.services.datastore import DonationStore

WEBHOOK_URL = "/api/paypal/webhook"
VERIFY = "donation_api.services.paypal_service.verify_webhook_signature"


def _event(event_type, resource, event_id="WH-1"):
    return {
        "id": event_id,
        "event_type": event_type,
        "resource_type": "capture",
        "resource": resource,
    }


def _capture_resource(capture_id="CAP1", order_id="O1", custom_id=None):
    resource = {"id": capture_id, "status": "COMPLETED"}
    if order_id:
        resource["supplementary_data"] = {"related_ids": {"order_id": order_id}}
    if custom_id:
        resource["custom_id"] = custom_id
    return resource


def _post(client, event, headers):
    return client.post(
        WEBHOOK_URL,
        data=json.dumps(event),
        content_type="application/json",
        headers=headers,
    )


class TestWebhookVerification:
    """Requests are verified with PayPal before anything is applied."""

    @patch(VERIFY)
    def test_missing_headers_returns_400(
        self, mock_verify, client, make_donation, reload_donation
    ):
        donation_id = make_donation(provider_order_id="O1")
        event = _event("PAYMENT.CAPTURE.COMPLETED", _capture_resource())

        resp = _post(client, event, headers={})

        assert resp.status_code == 400
        assert json.loads(resp.data)["error"] == "Missing PayPal signature headers"
        mock_verify.assert_not_called()
        assert reload_donation(donation_id).status == "pending"

    @patch(VERIFY)
    def test_partial_headers_returns_400(self, mock_verify, client, signature_headers):
        headers = dict(signature_headers)
        del headers["PayPal-Transmission-Sig"]

        resp = _post(client, _event("PAYMENT.CAPTURE.COMPLETED", {}), headers)

        assert resp.status_code == 400
        mock_verify.assert_not_called()

    @patch(VERIFY)
    def test_failed_verification_returns_400(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        mock_verify.return_value = "FAILURE"
        donation_id = make_donation(provider_order_id="O1")
        event = _event("PAYMENT.CAPTURE.COMPLETED", _capture_resource())

        resp = _post(client, event, signature_headers)

        assert resp.status_code == 400
        assert json.loads(resp.data)["error"] == "Invalid webhook signature"
        donation = reload_donation(donation_id)
        assert donation.status == "pending"
        assert donation.provider_capture_id is None
        assert WebhookEvent.query.count() == 0

    @patch(VERIFY)
    def test_verification_receives_event_and_webhook_id(
        self, mock_verify, client, signature_headers, seed_data
    ):
        mock_verify.return_value = "SUCCESS"
        event = _event("CHECKOUT.ORDER.APPROVED", {"id": "O-NONE"})

        _post(client, event, signature_headers)

        headers, webhook_id, verified_event = mock_verify.call_args[0]
        assert webhook_id == "WH-TEST-FAKE"
        assert verified_event == event
        assert headers["paypal-transmission-id"] == signature_headers["PayPal-Transmission-Id"]
        assert set(headers) == {
            "paypal-auth-algo",
            "paypal-cert-url",
            "paypal-transmission-id",
            "paypal-transmission-sig",
            "paypal-transmission-time",
        }

    @patch(VERIFY)
    def test_missing_webhook_id_returns_500(
        self, mock_verify, app, client, signature_headers, monkeypatch
    ):
        monkeypatch.setitem(app.config, "PAYPAL_WEBHOOK_ID", None)

        resp = _post(client, _event("PAYMENT.CAPTURE.COMPLETED", {}), signature_headers)

        assert resp.status_code == 500
        assert json.loads(resp.data)["error"] == "PAYPAL_WEBHOOK_ID not configured"
        mock_verify.assert_not_called()

    @patch(VERIFY)
    def test_malformed_body_returns_400(self, mock_verify, client, signature_headers):
        resp = client.post(
            WEBHOOK_URL,
            data="{oops",
            content_type="application/json",
            headers=signature_headers,
        )

        assert resp.status_code == 400
        assert json.loads(resp.data)["error"] == "Invalid JSON body"
        mock_verify.assert_not_called()


class TestOrderApproved:
    """CHECKOUT.ORDER.APPROVED handler."""

    @patch(VERIFY, return_value="SUCCESS")
    def test_pending_becomes_approved(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        donation_id = make_donation(provider_order_id="O1")

        resp = _post(
            client,
            _event("CHECKOUT.ORDER.APPROVED", {"id": "O1", "status": "APPROVED"}),
            signature_headers,
        )

        assert resp.status_code == 200
        assert json.loads(resp.data) == {"ok": True}
        assert reload_donation(donation_id).status == "approved"

    @patch(VERIFY, return_value="SUCCESS")
    def test_confirmed_is_not_regressed(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        """A late approval after capture leaves the donation confirmed."""
        donation_id = make_donation(
            provider_order_id="O1", provider_capture_id="CAP1", status="confirmed"
        )

        resp = _post(
            client, _event("CHECKOUT.ORDER.APPROVED", {"id": "O1"}), signature_headers
        )

        assert resp.status_code == 200
        assert reload_donation(donation_id).status == "confirmed"


class TestCaptureCompleted:
    """PAYMENT.CAPTURE.COMPLETED handler."""

    @patch(VERIFY, return_value="SUCCESS")
    def test_confirms_by_order_id(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        donation_id = make_donation(provider_order_id="O1")

        resp = _post(
            client,
            _event("PAYMENT.CAPTURE.COMPLETED", _capture_resource()),
            signature_headers,
        )

        assert resp.status_code == 200
        donation = reload_donation(donation_id)
        assert donation.status == "confirmed"
        assert donation.provider_capture_id == "CAP1"
        assert donation.confirmed_at is not None

    @patch(VERIFY, return_value="SUCCESS")
    def test_confirms_by_custom_id(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        """Order id never stored -> custom_id (our donation id) finds the row."""
        donation_id = make_donation()

        _post(
            client,
            _event(
                "PAYMENT.CAPTURE.COMPLETED",
                _capture_resource(order_id="O-UNKNOWN", custom_id=donation_id),
            ),
            signature_headers,
        )

        donation = reload_donation(donation_id)
        assert donation.status == "confirmed"
        assert donation.provider_capture_id == "CAP1"

    @patch(VERIFY, return_value="SUCCESS")
    def test_already_confirmed_is_noop(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        """Capture endpoint got there first: confirmed_at is not touched."""
        donation_id = make_donation(
            provider_order_id="O1", provider_capture_id="CAP1", status="confirmed"
        )
        before = reload_donation(donation_id).confirmed_at

        with patch.object(DonationStore, "update_donations") as mock_update:
            resp = _post(
                client,
                _event("PAYMENT.CAPTURE.COMPLETED", _capture_resource()),
                signature_headers,
            )

        assert resp.status_code == 200
        mock_update.assert_not_called()
        assert reload_donation(donation_id).confirmed_at == before

    @patch(VERIFY, return_value="SUCCESS")
    def test_legacy_confirmado_is_noop(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        donation_id = make_donation(
            provider_order_id="O1", provider_capture_id="CAP1", status="confirmado"
        )

        _post(
            client,
            _event("PAYMENT.CAPTURE.COMPLETED", _capture_resource()),
            signature_headers,
        )

        assert reload_donation(donation_id).status == "confirmado"

    @patch(VERIFY, return_value="SUCCESS")
    def test_refunded_is_not_reconfirmed(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        """A delayed COMPLETED after REFUNDED for the same capture is ignored."""
        donation_id = make_donation(
            provider_order_id="O1", provider_capture_id="CAP1", status="refunded"
        )

        _post(
            client,
            _event("PAYMENT.CAPTURE.COMPLETED", _capture_resource(), event_id="WH-LATE"),
            signature_headers,
        )

        assert reload_donation(donation_id).status == "refunded"

    @patch(VERIFY, return_value="SUCCESS")
    def test_no_correlation_ids_changes_nothing(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        donation_id = make_donation(provider_order_id="O1")

        resp = _post(
            client,
            _event("PAYMENT.CAPTURE.COMPLETED", {"status": "COMPLETED"}),
            signature_headers,
        )

        assert resp.status_code == 200
        assert reload_donation(donation_id).status == "pending"

    @patch(VERIFY, return_value="SUCCESS")
    def test_concurrent_confirmation_observed_mid_flight(
        self, mock_verify, client, signature_headers
    ):
        """Lookup already sees the capture stored -> handler writes nothing."""
        confirmed = SimpleNamespace(
            id="d-1", provider_capture_id="CAP1", status="confirmed", is_confirmed=True
        )

        with patch.object(DonationStore, "find_donation", return_value=confirmed), \
                patch.object(DonationStore, "update_donations") as mock_update:
            resp = _post(
                client,
                _event("PAYMENT.CAPTURE.COMPLETED", _capture_resource()),
                signature_headers,
            )

        assert resp.status_code == 200
        mock_update.assert_not_called()


class TestCaptureWebhookRace:
    """Capture endpoint and COMPLETED webhook both read the donation as pending."""

    @patch(VERIFY, return_value="SUCCESS")
    @patch("donation_api.services.paypal_service.capture_order")
    def test_both_writes_converge_on_one_capture(
        self, mock_capture, mock_verify, client, signature_headers,
        make_donation, reload_donation,
    ):
        donation_id = make_donation(provider_order_id="O1")
        mock_capture.return_value = {
            "id": "O1",
            "status": "COMPLETED",
            "purchase_units": [{
                "custom_id": donation_id,
                "payments": {"captures": [{"id": "CAP1", "status": "COMPLETED"}]},
            }],
        }
        stale_read = SimpleNamespace(
            id=donation_id, provider_capture_id=None, status="pending", is_confirmed=False
        )

        with patch.object(DonationStore, "find_donation", return_value=stale_read):
            capture_resp = client.post(
                "/api/paypal/capture-order",
                data=json.dumps({"orderID": "O1"}),
                content_type="application/json",
            )
            webhook_resp = _post(
                client,
                _event("PAYMENT.CAPTURE.COMPLETED",
                       _capture_resource(custom_id=donation_id)),
                signature_headers,
            )

        assert capture_resp.status_code == 200
        assert webhook_resp.status_code == 200

        donation = reload_donation(donation_id)
        assert donation.status == "confirmed"
        assert donation.provider_capture_id == "CAP1"
        assert donation.confirmed_at is not None
        assert Donation.query.count() == 1


class TestCaptureReversals:
    """REFUNDED / DENIED / FAILED handlers."""

    @patch(VERIFY, return_value="SUCCESS")
    def test_refunded(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        donation_id = make_donation(
            provider_order_id="O1", provider_capture_id="CAP1", status="confirmed"
        )

        resp = _post(
            client,
            _event("PAYMENT.CAPTURE.REFUNDED", {"id": "CAP1", "status": "REFUNDED"}),
            signature_headers,
        )

        assert resp.status_code == 200
        assert reload_donation(donation_id).status == "refunded"

    @patch(VERIFY, return_value="SUCCESS")
    def test_denied_and_failed(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        denied_id = make_donation(provider_capture_id="CAP-D", status="approved")
        failed_id = make_donation(provider_capture_id="CAP-F", status="approved")

        _post(
            client,
            _event("PAYMENT.CAPTURE.DENIED", {"id": "CAP-D"}, event_id="WH-D"),
            signature_headers,
        )
        _post(
            client,
            _event("PAYMENT.CAPTURE.FAILED", {"id": "CAP-F"}, event_id="WH-F"),
            signature_headers,
        )

        assert reload_donation(denied_id).status == "failed"
        assert reload_donation(failed_id).status == "failed"

    @patch(VERIFY, return_value="SUCCESS")
    def test_refund_without_capture_id_changes_nothing(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        donation_id = make_donation(provider_capture_id="CAP1", status="confirmed")

        resp = _post(client, _event("PAYMENT.CAPTURE.REFUNDED", {}), signature_headers)

        assert resp.status_code == 200
        assert reload_donation(donation_id).status == "confirmed"


class TestWebhookIdempotency:
    """Redelivered events and unknown types."""

    @patch(VERIFY, return_value="SUCCESS")
    def test_event_recorded_after_dispatch(
        self, mock_verify, client, signature_headers, make_donation
    ):
        make_donation(provider_order_id="O1")

        _post(
            client,
            _event("PAYMENT.CAPTURE.COMPLETED", _capture_resource(), event_id="WH-REC"),
            signature_headers,
        )

        recorded = WebhookEvent.query.filter_by(provider_event_id="WH-REC").one()
        assert recorded.event_type == "PAYMENT.CAPTURE.COMPLETED"

    @patch(VERIFY, return_value="SUCCESS")
    def test_duplicate_event_skipped(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        """Already-recorded event id -> 200, handler not run."""
        donation_id = make_donation(
            provider_order_id="O1", provider_capture_id="CAP1", status="confirmed"
        )
        db.session.add(WebhookEvent(
            provider_event_id="WH-DUP", event_type="PAYMENT.CAPTURE.REFUNDED",
        ))
        db.session.commit()

        resp = _post(
            client,
            _event("PAYMENT.CAPTURE.REFUNDED", {"id": "CAP1"}, event_id="WH-DUP"),
            signature_headers,
        )

        assert resp.status_code == 200
        assert reload_donation(donation_id).status == "confirmed"
        assert WebhookEvent.query.count() == 1

    @patch(VERIFY, return_value="SUCCESS")
    def test_unknown_event_type_acknowledged(
        self, mock_verify, client, signature_headers, make_donation, reload_donation
    ):
        donation_id = make_donation(provider_order_id="O1")

        resp = _post(
            client,
            _event("BILLING.SUBSCRIPTION.CREATED", {"id": "O1"}, event_id="WH-UNK"),
            signature_headers,
        )

        assert resp.status_code == 200
        assert reload_donation(donation_id).status == "pending"
        assert Donation.query.filter_by(status="pending").count() == 1
