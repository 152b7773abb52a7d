from bookstore.schemas.books import BookResponse
from bookstore.schemas.orders import (
    CancelledOrderResponse,
    OrderCreateRequest,
    OrderResponse,
    OrderStatusUpdateRequest,
)
from bookstore.schemas.payments import (
    CheckoutInitiateRequest,
    CheckoutInitiateResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentStatusResponse,
    RefundCreateRequest,
    RefundResponse,
)

__all__ = [
    "BookResponse",
    "CancelledOrderResponse",
    "OrderCreateRequest",
    "OrderResponse",
    "OrderStatusUpdateRequest",
    "CheckoutInitiateRequest",
    "CheckoutInitiateResponse",
    "PaymentInitiateRequest",
    "PaymentInitiateResponse",
    "PaymentStatusResponse",
    "RefundCreateRequest",
    "RefundResponse",
]
