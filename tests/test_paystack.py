"""Paystack client: initialize, verify, webhook signatures, outcome mapping."""

import hashlib
import hmac
from unittest.mock import MagicMock, patch

import pytest
import requests

from errors import GatewayError
from paystack import PaystackGateway, outcome_from_transaction

SECRET = "sk_test_0123456789abcdef"


def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    return resp


@pytest.fixture
def gw():
    return PaystackGateway(secret_key=SECRET, base_url="https://api.paystack.test", timeout=5)


class TestInitiateCharge:
    def test_posts_initialize_and_maps_response(self, gw):
        payload = {
            "status": True,
            "data": {
                "authorization_url": "https://checkout.paystack.com/abc",
                "access_code": "abc",
                "reference": "REG-1",
            },
        }
        with patch("paystack.requests.post", return_value=_response(payload)) as post:
            out = gw.initiate_charge(
                amount=10000,
                currency="GHS",
                description="Reseller Registration Fee",
                email="a@b.com",
                reference="REG-1",
                callback_url="https://shop.test/payments/paystack/callback",
                metadata={"payment_id": "REG-1"},
            )

        assert out == {
            "payment_handle": "REG-1",
            "hosted_payment_url": "https://checkout.paystack.com/abc",
            "access_code": "abc",
        }
        args, kwargs = post.call_args
        assert args[0] == "https://api.paystack.test/transaction/initialize"
        assert kwargs["json"]["amount"] == 10000
        assert kwargs["json"]["reference"] == "REG-1"
        assert kwargs["json"]["metadata"]["description"] == "Reseller Registration Fee"
        assert kwargs["headers"]["Authorization"] == f"Bearer {SECRET}"
        assert kwargs["timeout"] == 5

    def test_rejected_by_paystack(self, gw):
        with patch("paystack.requests.post", return_value=_response({"status": False, "message": "Invalid key"})):
            with pytest.raises(GatewayError):
                gw.initiate_charge(100, "GHS", "d", "a@b.com", "REG-1", "https://cb")

    def test_network_error(self, gw):
        with patch("paystack.requests.post", side_effect=requests.ConnectionError("down")):
            with pytest.raises(GatewayError):
                gw.initiate_charge(100, "GHS", "d", "a@b.com", "REG-1", "https://cb")

    def test_not_configured(self):
        gw = PaystackGateway(secret_key="")
        with patch("paystack.requests.post") as post:
            with pytest.raises(GatewayError):
                gw.initiate_charge(100, "GHS", "d", "a@b.com", "REG-1", "https://cb")
        post.assert_not_called()


class TestVerify:
    def test_success(self, gw):
        data = {"status": "success", "id": 99, "amount": 10000, "currency": "GHS", "reference": "REG-1"}
        with patch("paystack.requests.get", return_value=_response({"status": True, "data": data})) as get:
            ok, out, msg = gw.verify("REG-1")
        assert (ok, out, msg) == (True, data, "")
        assert get.call_args.args[0] == "https://api.paystack.test/transaction/verify/REG-1"

    def test_failed_charge(self, gw):
        data = {"status": "failed", "gateway_response": "Declined"}
        with patch("paystack.requests.get", return_value=_response({"status": True, "data": data})):
            ok, out, msg = gw.verify("REG-1")
        assert not ok
        assert out["status"] == "failed"
        assert msg == "Declined"

    def test_exception_is_reported_not_raised(self, gw):
        with patch("paystack.requests.get", side_effect=requests.Timeout("slow")):
            ok, out, msg = gw.verify("REG-1")
        assert not ok and out == {}
        assert msg.startswith("Verify error")


class TestSignature:
    def test_valid_signature(self, gw):
        body = b'{"event":"charge.success"}'
        sig = hmac.new(SECRET.encode(), body, hashlib.sha512).hexdigest()
        assert gw.verify_signature(body, sig)

    def test_tampered_body(self, gw):
        sig = hmac.new(SECRET.encode(), b'{"event":"charge.success"}', hashlib.sha512).hexdigest()
        assert not gw.verify_signature(b'{"event":"charge.failed"}', sig)

    def test_missing_signature(self, gw):
        assert not gw.verify_signature(b"{}", None)


class TestOutcomeMapping:
    def test_paid_in_full(self):
        data = {"status": "success", "id": 77, "amount": 10000, "currency": "GHS"}
        assert outcome_from_transaction(data, 10000, "GHS") == ("success", "77")

    def test_underpaid_is_failure(self):
        data = {"status": "success", "id": 77, "amount": 500, "currency": "GHS"}
        assert outcome_from_transaction(data, 10000, "GHS") == ("failure", "77")

    def test_wrong_currency_is_failure(self):
        data = {"status": "success", "id": 77, "amount": 10000, "currency": "NGN"}
        assert outcome_from_transaction(data, 10000, "GHS")[0] == "failure"

    @pytest.mark.parametrize("status, outcome", [("failed", "failure"), ("reversed", "failure"), ("abandoned", None), ("ongoing", None)])
    def test_status_mapping(self, status, outcome):
        assert outcome_from_transaction({"status": status, "id": 1}, 10000, "GHS")[0] == outcome
