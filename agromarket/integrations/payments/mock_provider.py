from __future__ import annotations

import uuid

from agromarket.integrations.payments.base import PaymentsProvider, StkPushResult


class MockPaymentsProvider(PaymentsProvider):
    name = "mock"

    def __init__(self, *, force_fail: bool = False):
        self.force_fail = bool(force_fail)

    def initiate(self, *, amount_minor: int, phone: str, correlation_id: str, description: str = "") -> StkPushResult:
        if self.force_fail:
            return StkPushResult(
                response_code="1",
                checkout_request_id="",
                customer_message="mock forced failure",
                provider=self.name,
            )
        return StkPushResult(
            response_code="0",
            checkout_request_id=f"ws_CO_mock_{uuid.uuid4().hex[:20]}",
            merchant_request_id=f"mock-{uuid.uuid4().hex[:12]}",
            customer_message="Success. Request accepted for processing",
            provider=self.name,
            raw={
                "amount_minor": int(amount_minor),
                "phone": phone,
                "correlation_id": correlation_id,
                "description": description,
            },
        )
