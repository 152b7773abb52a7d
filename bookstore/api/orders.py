from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from bookstore.config import settings
from bookstore.dependencies import get_current_user, get_gateway_client
from bookstore.errors import BookstoreError, Unauthorized
from bookstore.models import Order, User, get_db
from bookstore.schemas.orders import (
    CancelledOrderResponse,
    OrderCreateRequest,
    OrderItemResponse,
    OrderResponse,
)
from bookstore.services import order_ledger, payment_service
from bookstore.services.opay_client import OPayClient
from bookstore.services.order_ledger import OrderLine

router = APIRouter()


def order_to_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        user_id=order.user_id,
        total_amount=order.total_amount,
        delivery_fee=order.delivery_fee,
        delivery_method=order.delivery_method,
        payment_status=order.payment_status,
        order_status=order.order_status,
        delivery_address=order.delivery_address,
        payment_reference=order.payment_reference,
        external_order_no=order.external_order_no,
        items=[
            OrderItemResponse(
                id=item.id,
                book_id=item.book_id,
                title=item.book.title if item.book else None,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in order.items
        ],
        created_at=order.created_at.isoformat() if order.created_at else "",
    )


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
)
def create_order(
    body: OrderCreateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Create a pending order for the requested books.
    Stock is checked now but only taken from the catalog once payment settles.
    """
    try:
        order = order_ledger.create_order(
            db,
            user_id=current_user.id,
            lines=[OrderLine(book_id=item.book_id, quantity=item.quantity) for item in body.items],
            delivery_address=body.delivery_address,
            delivery_method=body.delivery_method,
            delivery_fee=settings.payment_config().delivery_fee,
        )
        db.commit()
    except BookstoreError:
        db.rollback()
        raise
    return order_to_response(order_ledger.get_order(db, order.id))


@router.get(
    "",
    response_model=list[OrderResponse],
    summary="List my orders",
)
def my_orders(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Returns the current user's orders, newest first."""
    return [order_to_response(order) for order in order_ledger.list_orders_for_user(db, current_user.id)]


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order by ID",
)
def get_order(
    order_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Owners see their own orders; admins see any."""
    order = order_ledger.get_order(db, order_id)
    if order.user_id != current_user.id and not current_user.is_admin:
        raise Unauthorized("Unauthorized to view this order")
    return order_to_response(order)


@router.delete(
    "/{order_id}",
    response_model=CancelledOrderResponse,
    summary="Cancel an order",
)
def cancel_order(
    order_id: str,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[OPayClient, Depends(get_gateway_client)],
):
    """A pending payment attempt is closed at OPay before the order is deleted."""
    return payment_service.cancel_order(db, gateway, order_id, current_user.id)
