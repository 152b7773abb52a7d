"""
Domain exceptions for the order and payment lifecycle.

Services raise these; the handler registered in main.py turns them into JSON
responses with the status code each class carries.
"""
from fastapi import status


class BookstoreError(Exception):
    """Base class for all domain errors."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"detail": self.message}


class NotFound(BookstoreError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource_type: str, identifier: object):
        super().__init__(f"{resource_type} not found: {identifier}")
        self.resource_type = resource_type
        self.identifier = identifier


class InsufficientStock(BookstoreError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, book_id: int, requested: int, available: int | None = None, title: str | None = None):
        label = title or f"book {book_id}"
        message = f"Insufficient stock for {label}: requested {requested}"
        if available is not None:
            message += f", available {available}"
        super().__init__(message)
        self.book_id = book_id
        self.requested = requested
        self.available = available


class Unauthorized(BookstoreError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidState(BookstoreError):
    status_code = status.HTTP_409_CONFLICT


class ValidationFailed(BookstoreError):
    status_code = status.HTTP_400_BAD_REQUEST


class GatewayError(BookstoreError):
    """The payment gateway answered, but with a non-success code."""

    status_code = status.HTTP_502_BAD_GATEWAY
    action = "request"

    def __init__(self, code: str, gateway_message: str, action: str | None = None):
        super().__init__(f"OPay {action or self.action} failed: {gateway_message} (code {code})")
        self.code = code
        self.gateway_message = gateway_message

    def to_payload(self) -> dict:
        return {"detail": self.message, "code": self.code, "gatewayMessage": self.gateway_message}


class PaymentInitiationFailed(GatewayError):
    action = "payment"


class GatewayUnreachable(BookstoreError):
    """Transport-level failure talking to the gateway (timeout, DNS, bad body)."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
