from __future__ import annotations

import base64
from datetime import datetime

import requests

from agromarket.errors import GatewayError
from agromarket.integrations.payments.base import PaymentsProvider, StkPushResult
from agromarket.utils.money import minor_to_whole_units

BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


def normalize_msisdn(phone: str) -> str:
    """Return the ``2547XXXXXXXX`` form the STK push endpoint expects."""
    digits = "".join(ch for ch in str(phone or "") if ch.isdigit())
    if digits.startswith("0") and len(digits) == 10:
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in ("7", "1"):
        digits = "254" + digits
    if not (digits.startswith("254") and len(digits) == 12):
        raise ValueError(f"invalid_msisdn {phone!r}")
    return digits


def _json_body(r) -> dict:
    if not r.content:
        return {}
    try:
        j = r.json()
    except ValueError:
        return {"raw": r.text[:500]}
    return j if isinstance(j, dict) else {"payload": j}


class DarajaPaymentsProvider(PaymentsProvider):
    name = "daraja"

    def __init__(
        self,
        *,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        environment: str = "sandbox",
        timeout: int = 25,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.base_url = BASE_URLS.get((environment or "sandbox").strip().lower(), BASE_URLS["sandbox"])
        self.timeout = int(timeout or 25)

    def _access_token(self) -> str:
        try:
            r = requests.get(
                f"{self.base_url}/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=(self.consumer_key, self.consumer_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError("Payment gateway unreachable", detail={"stage": "oauth", "reason": str(exc)})
        j = _json_body(r)
        token = str(j.get("access_token") or "").strip()
        if r.status_code < 200 or r.status_code >= 300 or not token:
            raise GatewayError("Payment gateway authentication failed", detail={"stage": "oauth", "http_status": r.status_code})
        return token

    def _password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}".encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    def initiate(self, *, amount_minor: int, phone: str, correlation_id: str, description: str = "") -> StkPushResult:
        try:
            msisdn = normalize_msisdn(phone)
        except ValueError:
            raise GatewayError("Invalid M-Pesa phone number", detail={"stage": "request"})

        token = self._access_token()
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": minor_to_whole_units(amount_minor),
            "PartyA": msisdn,
            "PartyB": self.shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": self.callback_url,
            "AccountReference": (correlation_id or "")[:12],
            "TransactionDesc": (description or "Order payment")[:13],
        }
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        try:
            r = requests.post(
                f"{self.base_url}/mpesa/stkpush/v1/processrequest",
                headers=headers,
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise GatewayError("Payment gateway unreachable", detail={"stage": "stkpush", "reason": str(exc)})

        j = _json_body(r)
        if r.status_code >= 500:
            raise GatewayError("Payment gateway error", detail={"stage": "stkpush", "http_status": r.status_code})
        return StkPushResult(
            response_code=str(j.get("ResponseCode") if j.get("ResponseCode") is not None else "").strip(),
            checkout_request_id=(j.get("CheckoutRequestID") or "").strip(),
            merchant_request_id=(j.get("MerchantRequestID") or "").strip(),
            customer_message=(j.get("CustomerMessage") or j.get("errorMessage") or "").strip(),
            provider=self.name,
            raw=j,
        )
