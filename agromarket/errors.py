from __future__ import annotations


class FulfillmentError(Exception):
    """Base for every expected failure of a core operation.

    ``code`` is the stable machine tag surfaced in the JSON error body and
    ``status`` the HTTP status the API layer answers with.
    """

    code = "FULFILLMENT_ERROR"
    status = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, detail: dict | None = None):
        self.message = (message or self.default_message).strip()
        self.detail = detail or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.status),
        }
        if self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationError(FulfillmentError):
    code = "VALIDATION_ERROR"
    status = 400
    default_message = "Invalid request"


class NotFound(FulfillmentError):
    code = "NOT_FOUND"
    status = 404
    default_message = "Not found"


class Forbidden(FulfillmentError):
    code = "FORBIDDEN"
    status = 403
    default_message = "Not authorized"


class Conflict(FulfillmentError):
    code = "CONFLICT"
    status = 409
    default_message = "Already processed"


class InvalidScan(FulfillmentError):
    # One message for every failed scan check: wrong code, courier or status.
    code = "INVALID_SCAN"
    status = 401
    default_message = "Invalid scan, code, or task is not ready."


class GatewayError(FulfillmentError):
    code = "GATEWAY_ERROR"
    status = 502
    default_message = "Payment request could not be initiated"


class Unauthorized(FulfillmentError):
    code = "UNAUTHORIZED"
    status = 401
    default_message = "Unauthorized"
