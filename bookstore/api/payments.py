import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from bookstore.dependencies import get_current_user, get_gateway_client, require_admin
from bookstore.errors import Unauthorized
from bookstore.models import User, get_db
from bookstore.schemas.payments import (
    CheckoutInitiateRequest,
    CheckoutInitiateResponse,
    PaymentCancelRequest,
    PaymentCancelResponse,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentStatusResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    TransferAccountResponse,
)
from bookstore.services import order_ledger, payment_service
from bookstore.services.opay_client import OPayClient

router = APIRouter()
logger = logging.getLogger(__name__)


def _ensure_owner(db: Session, order_id: str, user: User) -> None:
    order = order_ledger.get_order(db, order_id)
    if order.user_id != user.id:
        raise Unauthorized("Unauthorized to pay for this order")


def _status_response(result: payment_service.PaymentStatusResult) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        reference=result.reference,
        status=result.status,
        amount=result.amount,
        currency=result.currency,
    )


@router.post(
    "/initiate",
    response_model=PaymentInitiateResponse,
    summary="Start a direct OPay payment for an order",
)
def initiate_payment(
    body: PaymentInitiateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[OPayClient, Depends(get_gateway_client)],
):
    """
    Creates a payment with the chosen method and returns what the customer needs
    next: a 3DS redirect, a transfer account, a USSD string, a QR code or a reference code.
    """
    _ensure_owner(db, body.order_id, current_user)
    result = payment_service.initiate_payment(
        db,
        gateway,
        body.order_id,
        body.method.to_method(),
        phone=body.user_phone,
        customer_name=body.customer_name,
    )
    transfer_account = None
    if result.transfer_account is not None:
        transfer_account = TransferAccountResponse(
            account_number=result.transfer_account.account_number,
            bank_name=result.transfer_account.bank_name,
            expired_timestamp=result.transfer_account.expired_timestamp,
        )
    return PaymentInitiateResponse(
        payment_reference=result.payment_reference,
        external_order_no=result.external_order_no,
        status=result.status,
        redirect_url=result.redirect_url,
        transfer_account=transfer_account,
        ussd=result.ussd,
        qr_code=result.qr_code,
        reference_code=result.reference_code,
    )


@router.post(
    "/initiate-cashier",
    response_model=CheckoutInitiateResponse,
    summary="Start an OPay hosted cashier payment",
)
def initiate_cashier_payment(
    body: CheckoutInitiateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[OPayClient, Depends(get_gateway_client)],
):
    """Returns the cashier URL to redirect the customer to."""
    _ensure_owner(db, body.order_id, current_user)
    result = payment_service.initiate_express_checkout(db, gateway, body.order_id, phone=body.user_phone)
    return CheckoutInitiateResponse(
        payment_reference=result.payment_reference,
        external_order_no=result.external_order_no,
        cashier_url=result.cashier_url,
    )


@router.get(
    "/return",
    response_model=PaymentStatusResponse,
    summary="Landing point after the customer leaves the OPay page",
)
def payment_return(
    gateway: Annotated[OPayClient, Depends(get_gateway_client)],
    reference: str = Query(min_length=1),
):
    """Reports the gateway's view of the payment. Settlement happens through the callback."""
    return _status_response(payment_service.query_payment_status(gateway, reference))


@router.get(
    "/status/{reference}",
    response_model=PaymentStatusResponse,
    summary="Query payment status at OPay",
)
def payment_status(
    reference: str,
    gateway: Annotated[OPayClient, Depends(get_gateway_client)],
):
    return _status_response(payment_service.query_payment_status(gateway, reference))


@router.post(
    "/cancel",
    response_model=PaymentCancelResponse,
    summary="Close an open payment",
)
def cancel_payment(
    body: PaymentCancelRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    gateway: Annotated[OPayClient, Depends(get_gateway_client)],
):
    """Customers may close payments on their own orders; admins may close any reference."""
    if not current_user.is_admin:
        order = order_ledger.get_order_by_payment_reference(db, body.reference)
        if order.user_id != current_user.id:
            raise Unauthorized("Unauthorized to cancel this payment")

    order = payment_service.cancel_payment(db, gateway, body.reference)
    return PaymentCancelResponse(
        reference=body.reference,
        cancelled=True,
        order_id=order.id if order else None,
        payment_status=order.payment_status if order else None,
    )


@router.post(
    "/verify",
    response_model=PaymentVerifyResponse,
    summary="Manually settle a payment (admin)",
)
def verify_payment(
    body: PaymentVerifyRequest,
    admin: Annotated[User, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    """Fallback for when the gateway callback never arrived. Same transitions as the callback."""
    order = payment_service.verify_payment(db, body.order_id, body.reference, body.status)
    logger.info("Admin %s verified order %s as %s", admin.id, order.id, body.status)
    return PaymentVerifyResponse(
        order_id=order.id,
        payment_status=order.payment_status,
        order_status=order.order_status,
    )
