from bookstore.models.database import Base, get_db
from bookstore.models.user import User
from bookstore.models.book import Book
from bookstore.models.order import DeliveryMethod, Order, OrderItem, OrderStatus, PaymentStatus

__all__ = [
    "Base",
    "get_db",
    "User",
    "Book",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "DeliveryMethod",
]
