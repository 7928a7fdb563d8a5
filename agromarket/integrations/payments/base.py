from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class StkPushResult:
    response_code: str
    checkout_request_id: str
    customer_message: str = ""
    merchant_request_id: str = ""
    provider: str = ""
    raw: dict | None = None

    @property
    def accepted(self) -> bool:
        return str(self.response_code).strip() == "0" and bool(self.checkout_request_id)


@dataclass
class StkCallback:
    checkout_request_id: str
    result_code: int
    result_desc: str = ""
    merchant_request_id: str = ""
    items: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return int(self.result_code) == 0

    def item(self, name: str, default=None):
        return self.items.get(name, default)


class PaymentsProvider:
    name = "unknown"

    def initiate(self, *, amount_minor: int, phone: str, correlation_id: str, description: str = "") -> StkPushResult:
        raise NotImplementedError
