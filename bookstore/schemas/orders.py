from decimal import Decimal

from pydantic import BaseModel, Field, field_serializer

from bookstore.models import DeliveryMethod, OrderStatus


class _MoneyResponse(BaseModel):
    @field_serializer("unit_price", "total_amount", "delivery_fee", check_fields=False)
    def serialize_amount(self, value: Decimal) -> str:
        return format(value, "f")


class OrderItemRequest(BaseModel):
    book_id: int
    quantity: int = Field(gt=0)


class OrderCreateRequest(BaseModel):
    items: list[OrderItemRequest] = Field(min_length=1)
    delivery_address: str = Field(min_length=1)
    delivery_method: DeliveryMethod = DeliveryMethod.PICKUP

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "items": [{"book_id": 1, "quantity": 2}],
                    "delivery_address": "Hall 3, Room 12",
                    "delivery_method": "delivery",
                }
            ]
        }
    }


class OrderItemResponse(_MoneyResponse):
    id: str
    book_id: int
    title: str | None = None
    quantity: int
    unit_price: Decimal


class OrderResponse(_MoneyResponse):
    id: str
    user_id: int
    total_amount: Decimal
    delivery_fee: Decimal
    delivery_method: str
    payment_status: str
    order_status: str
    delivery_address: str
    payment_reference: str | None = None
    external_order_no: str | None = None
    items: list[OrderItemResponse]
    created_at: str


class CancelledOrderItem(_MoneyResponse):
    book_id: int
    quantity: int
    unit_price: Decimal


class CancelledOrderResponse(_MoneyResponse):
    id: str
    user_id: int
    total_amount: Decimal
    delivery_fee: Decimal
    delivery_method: str
    payment_status: str
    order_status: str
    delivery_address: str
    payment_reference: str | None = None
    items: list[CancelledOrderItem]

    model_config = {"from_attributes": True}


class OrderStatusUpdateRequest(BaseModel):
    order_status: OrderStatus
