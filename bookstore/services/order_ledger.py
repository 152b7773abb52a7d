"""Order and order item lifecycle: creation, lookups, status writes, cancellation.

Functions flush but never commit. The caller (an API route or the payment
orchestrator) owns the transaction so that an order and its items, or a
status change and its stock movement, land together or not at all.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy.orm import Session, selectinload

from bookstore.errors import InsufficientStock, InvalidState, NotFound, Unauthorized, ValidationFailed
from bookstore.models import DeliveryMethod, Order, OrderItem, OrderStatus, PaymentStatus
from bookstore.services import catalog
from bookstore.services.money import quantize_amount

logger = logging.getLogger(__name__)

CANCELLABLE_STOCK_RESTORE_STATUSES = {OrderStatus.PROCESSING.value, OrderStatus.PURCHASED.value}


@dataclass(frozen=True)
class OrderLine:
    book_id: int
    quantity: int


@dataclass(frozen=True)
class OrderUpdate:
    """Partial update; fields left as None are not written."""

    payment_reference: str | None = None
    external_order_no: str | None = None
    payment_status: PaymentStatus | None = None
    order_status: OrderStatus | None = None


@dataclass(frozen=True)
class OrderItemSnapshot:
    book_id: int
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class OrderSnapshot:
    id: str
    user_id: int
    total_amount: Decimal
    delivery_fee: Decimal
    delivery_method: str
    payment_status: str
    order_status: str
    delivery_address: str
    payment_reference: str | None
    items: list[OrderItemSnapshot] = field(default_factory=list)

    @classmethod
    def from_order(cls, order: Order) -> "OrderSnapshot":
        return cls(
            id=order.id,
            user_id=order.user_id,
            total_amount=order.total_amount,
            delivery_fee=order.delivery_fee,
            delivery_method=order.delivery_method,
            payment_status=order.payment_status,
            order_status=order.order_status,
            delivery_address=order.delivery_address,
            payment_reference=order.payment_reference,
            items=[
                OrderItemSnapshot(book_id=item.book_id, quantity=item.quantity, unit_price=item.unit_price)
                for item in order.items
            ],
        )


def _merge_lines(lines: list[OrderLine]) -> dict[int, int]:
    merged: dict[int, int] = {}
    for line in lines:
        if line.quantity <= 0:
            raise ValidationFailed(f"Quantity for book {line.book_id} must be positive")
        merged[line.book_id] = merged.get(line.book_id, 0) + line.quantity
    return merged


def delivery_fee_for(delivery_method: DeliveryMethod, flat_fee: Decimal) -> Decimal:
    if delivery_method == DeliveryMethod.DELIVERY:
        return quantize_amount(flat_fee)
    return quantize_amount(0)


def create_order(
    db: Session,
    user_id: int,
    lines: list[OrderLine],
    delivery_address: str,
    delivery_method: DeliveryMethod | str,
    delivery_fee: Decimal,
) -> Order:
    """Validate stock against a single catalog read and stage the order with its items.

    Stock is not decremented here; that happens once the payment settles.
    """
    if not lines:
        raise ValidationFailed("An order needs at least one item")
    method = DeliveryMethod(delivery_method)
    requested = _merge_lines(lines)

    books = {book.id: book for book in catalog.get_books_by_ids(db, list(requested))}
    missing = [book_id for book_id in requested if book_id not in books]
    if missing:
        raise NotFound("Book", ", ".join(str(book_id) for book_id in missing))

    subtotal = Decimal("0")
    items: list[OrderItem] = []
    for book_id, quantity in requested.items():
        book = books[book_id]
        if book.stock < quantity:
            raise InsufficientStock(book.id, quantity, available=book.stock, title=book.title)
        unit_price = quantize_amount(book.price)
        subtotal += unit_price * quantity
        items.append(OrderItem(id=str(uuid.uuid4()), book_id=book.id, quantity=quantity, unit_price=unit_price))

    fee = delivery_fee_for(method, delivery_fee)
    order = Order(
        id=str(uuid.uuid4()),
        user_id=user_id,
        total_amount=quantize_amount(subtotal + fee),
        delivery_fee=fee,
        delivery_method=method.value,
        payment_status=PaymentStatus.PENDING.value,
        order_status=OrderStatus.PROCESSING.value,
        delivery_address=delivery_address,
        stock_deducted=False,
        items=items,
    )
    db.add(order)
    db.flush()
    logger.info("Order %s created for user %s: total=%s fee=%s", order.id, user_id, order.total_amount, fee)
    return order


def _order_query(db: Session):
    return db.query(Order).options(selectinload(Order.items).selectinload(OrderItem.book))


def get_order(db: Session, order_id: str) -> Order:
    order = _order_query(db).filter(Order.id == order_id).first()
    if not order:
        raise NotFound("Order", order_id)
    return order


def get_order_for_update(db: Session, order_id: str) -> Order:
    order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if not order:
        raise NotFound("Order", order_id)
    return order


def get_order_by_payment_reference(db: Session, reference: str, *, lock: bool = False) -> Order:
    query = db.query(Order).filter(Order.payment_reference == reference)
    if lock:
        query = query.with_for_update()
    order = query.first()
    if not order:
        raise NotFound("Order", f"reference {reference}")
    return order


def list_orders_for_user(db: Session, user_id: int) -> list[Order]:
    return _order_query(db).filter(Order.user_id == user_id).order_by(Order.created_at.desc()).all()


def list_all_orders(db: Session) -> list[Order]:
    return _order_query(db).order_by(Order.created_at.desc()).all()


def update_order_status(db: Session, order_id: str, new_status: OrderStatus | str) -> Order:
    """No transition table here; callers only ask for transitions they allow."""
    order = get_order(db, order_id)
    order.order_status = OrderStatus(new_status).value
    db.flush()
    return order


def update_payment_status(db: Session, order_id: str, new_status: PaymentStatus | str) -> Order:
    order = get_order(db, order_id)
    order.payment_status = PaymentStatus(new_status).value
    db.flush()
    return order


def apply_order_update(db: Session, order_id: str, update: OrderUpdate) -> Order:
    order = get_order(db, order_id)
    if update.payment_reference is not None:
        if update.payment_reference != order.payment_reference:
            # The gateway order number belongs to the reference it came with.
            order.external_order_no = None
        order.payment_reference = update.payment_reference
    if update.external_order_no is not None:
        order.external_order_no = update.external_order_no
    if update.payment_status is not None:
        order.payment_status = PaymentStatus(update.payment_status).value
    if update.order_status is not None:
        order.order_status = OrderStatus(update.order_status).value
    db.flush()
    return order


def decrement_stock_for_order(db: Session, order_id: str) -> bool:
    """Take each item's quantity off the catalog, at most once per order.

    Returns False when stock was already taken for this order. Raises
    InsufficientStock if another order consumed the stock in the meantime; the
    caller must roll back because earlier items may already be decremented.
    """
    order = get_order_for_update(db, order_id)
    if order.stock_deducted:
        logger.info("Stock for order %s already deducted, skipping", order_id)
        return False

    for item in order.items:
        catalog.decrement_stock(db, item.book_id, item.quantity)
    order.stock_deducted = True
    db.flush()
    logger.info("Stock deducted for order %s (%s items)", order_id, len(order.items))
    return True


def cancel_order(db: Session, order_id: str, requester_id: int) -> OrderSnapshot:
    order = get_order(db, order_id)
    if order.user_id != requester_id:
        raise Unauthorized("Unauthorized to cancel this order")
    if order.order_status == OrderStatus.DELIVERED.value:
        raise InvalidState("Cannot cancel a delivered order")
    if order.payment_status == PaymentStatus.PAID.value and order.order_status != OrderStatus.PROCESSING.value:
        raise InvalidState("Cannot cancel an order that has been paid and is being fulfilled")

    snapshot = OrderSnapshot.from_order(order)
    if order.order_status in CANCELLABLE_STOCK_RESTORE_STATUSES:
        for item in order.items:
            if not catalog.restore_stock(db, item.book_id, item.quantity):
                logger.warning("Book %s vanished while restoring stock for order %s", item.book_id, order_id)

    db.delete(order)
    db.flush()
    logger.info("Order %s cancelled by user %s", order_id, requester_id)
    return snapshot
