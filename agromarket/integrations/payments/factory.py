from __future__ import annotations

from flask import current_app

from agromarket.integrations.common import IntegrationMisconfiguredError
from agromarket.integrations.payments.base import PaymentsProvider
from agromarket.integrations.payments.daraja_provider import DarajaPaymentsProvider
from agromarket.integrations.payments.mock_provider import MockPaymentsProvider

_DARAJA_KEYS = (
    "MPESA_CONSUMER_KEY",
    "MPESA_CONSUMER_SECRET",
    "MPESA_SHORTCODE",
    "MPESA_PASSKEY",
    "MPESA_CALLBACK_URL",
)


def _setting(settings, key: str, default=None):
    if isinstance(settings, dict) or hasattr(settings, "get"):
        return settings.get(key, default)
    return getattr(settings, key, default)


def build_payments_provider(settings) -> PaymentsProvider:
    provider = (_setting(settings, "PAYMENTS_PROVIDER", "mock") or "mock").strip().lower()

    if provider == "mock":
        return MockPaymentsProvider(force_fail=bool(_setting(settings, "MOCK_PAYMENTS_FORCE_FAIL", False)))

    if provider != "daraja":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    missing = [key for key in _DARAJA_KEYS if not str(_setting(settings, key, "") or "").strip()]
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {','.join(missing)}")

    return DarajaPaymentsProvider(
        consumer_key=str(_setting(settings, "MPESA_CONSUMER_KEY")).strip(),
        consumer_secret=str(_setting(settings, "MPESA_CONSUMER_SECRET")).strip(),
        shortcode=str(_setting(settings, "MPESA_SHORTCODE")).strip(),
        passkey=str(_setting(settings, "MPESA_PASSKEY")).strip(),
        callback_url=str(_setting(settings, "MPESA_CALLBACK_URL")).strip(),
        environment=str(_setting(settings, "MPESA_ENV", "sandbox") or "sandbox"),
        timeout=int(_setting(settings, "MPESA_TIMEOUT_SECONDS", 25) or 25),
    )


def payment_health(settings) -> dict:
    provider = (_setting(settings, "PAYMENTS_PROVIDER", "mock") or "mock").strip().lower()
    missing = []
    if provider == "daraja":
        missing = [key for key in _DARAJA_KEYS if not str(_setting(settings, key, "") or "").strip()]
    if provider not in ("mock", "daraja"):
        status = "misconfigured"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {
        "status": status,
        "provider": provider,
        "missing": missing,
    }


def get_payments_provider() -> PaymentsProvider:
    provider = current_app.extensions.get("agromarket.payments")
    if provider is None:
        provider = build_payments_provider(current_app.config)
        current_app.extensions["agromarket.payments"] = provider
    return provider
