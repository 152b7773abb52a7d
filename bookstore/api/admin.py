import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from bookstore.api.orders import order_to_response
from bookstore.dependencies import get_gateway_client, require_admin
from bookstore.errors import BookstoreError
from bookstore.models import User, get_db
from bookstore.schemas.orders import OrderResponse, OrderStatusUpdateRequest
from bookstore.schemas.payments import RefundCreateRequest, RefundResponse
from bookstore.services import order_ledger, payment_service
from bookstore.services.opay_client import OPayClient

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/orders",
    response_model=list[OrderResponse],
    summary="List all orders",
)
def list_orders(
    admin: Annotated[User, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    return [order_to_response(order) for order in order_ledger.list_all_orders(db)]


@router.put(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    summary="Set fulfilment status",
)
def update_order_status(
    order_id: str,
    body: OrderStatusUpdateRequest,
    admin: Annotated[User, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    """Moves an order through fulfilment (purchased, delivering, delivered)."""
    try:
        order = order_ledger.update_order_status(db, order_id, body.order_status)
        db.commit()
    except BookstoreError:
        db.rollback()
        raise
    logger.info("Admin %s set order %s status to %s", admin.id, order_id, body.order_status.value)
    return order_to_response(order_ledger.get_order(db, order.id))


@router.post(
    "/orders/{order_id}/refund",
    response_model=RefundResponse,
    summary="Refund a paid order",
)
def refund_order(
    order_id: str,
    body: RefundCreateRequest,
    admin: Annotated[User, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[OPayClient, Depends(get_gateway_client)],
):
    """Full refund unless an amount is given. The order record itself is left as is."""
    result = payment_service.create_refund(
        db,
        gateway,
        order_id,
        amount=body.amount,
        refund_way=body.refund_way,
        receiver_bank_code=body.receiver_bank_code,
        receiver_account_no=body.receiver_account_no,
    )
    logger.info("Admin %s requested refund %s for order %s", admin.id, result.reference, order_id)
    return RefundResponse(
        reference=result.reference,
        status=result.status,
        amount=result.amount,
        currency=result.currency,
        refund_order_no=result.refund_order_no,
        original_reference=result.original_reference,
    )


@router.get(
    "/refunds/{reference}",
    response_model=RefundResponse,
    summary="Query refund status",
)
def refund_status(
    reference: str,
    admin: Annotated[User, Depends(require_admin)],
    gateway: Annotated[OPayClient, Depends(get_gateway_client)],
):
    result = payment_service.query_refund_status(gateway, reference)
    return RefundResponse(
        reference=result.reference,
        status=result.status,
        amount=result.amount,
        currency=result.currency,
        refund_order_no=result.refund_order_no,
    )
