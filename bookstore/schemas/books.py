from decimal import Decimal

from pydantic import BaseModel, field_serializer


class BookResponse(BaseModel):
    id: int
    title: str
    author: str
    price: Decimal
    category: str
    stock: int

    model_config = {"from_attributes": True}

    @field_serializer("price")
    def serialize_price(self, value: Decimal) -> str:
        return format(value, "f")
