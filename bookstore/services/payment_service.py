"""Payment orchestration for book orders.

Coordinates the order ledger and the OPay client: starts payment attempts,
stores the correlation identifiers on the order, and reconciles the outcome
however it arrives (gateway callback, manual verification, cancellation).

Settlement is idempotent. Once an order is paid, further success signals are
no-ops and failure signals are rejected, and stock leaves the catalog exactly
once per order.
"""
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

from sqlalchemy.orm import Session

from bookstore.errors import (
    GatewayError,
    InsufficientStock,
    InvalidState,
    NotFound,
    PaymentInitiationFailed,
    Unauthorized,
    ValidationFailed,
)
from bookstore.models import Order, OrderStatus, PaymentStatus, User
from bookstore.services import order_ledger
from bookstore.services.money import quantize_amount
from bookstore.services.opay_client import (
    CheckoutRequest,
    GatewayResponse,
    OPayClient,
    Payer,
    PaymentMethod,
    PaymentRequest,
    RefundRequest,
)
from bookstore.services.order_ledger import OrderSnapshot, OrderUpdate

logger = logging.getLogger(__name__)

PAYMENT_REFERENCE_PREFIX = "BOOKMATE"
REFUND_REFERENCE_PREFIX = "REFUND"


class GatewayPaymentStatus(str, Enum):
    INITIAL = "INITIAL"
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    CLOSE = "CLOSE"


FAILED_GATEWAY_STATUSES = {GatewayPaymentStatus.FAIL.value, GatewayPaymentStatus.CLOSE.value}


@dataclass(frozen=True)
class TransferAccount:
    account_number: str | None
    bank_name: str | None
    expired_timestamp: int | None


@dataclass(frozen=True)
class PaymentInitiation:
    payment_reference: str
    external_order_no: str | None
    status: str | None = None
    redirect_url: str | None = None
    transfer_account: TransferAccount | None = None
    ussd: str | None = None
    qr_code: str | None = None
    reference_code: str | None = None


@dataclass(frozen=True)
class CheckoutInitiation:
    payment_reference: str
    external_order_no: str | None
    cashier_url: str


@dataclass(frozen=True)
class PaymentStatusResult:
    reference: str
    status: str | None
    amount: Decimal | None
    currency: str | None


@dataclass(frozen=True)
class RefundResult:
    reference: str
    status: str | None
    amount: Decimal | None
    currency: str | None
    refund_order_no: str | None = None
    original_reference: str | None = None


def new_payment_reference(order_id: str, prefix: str = PAYMENT_REFERENCE_PREFIX) -> str:
    return f"{prefix}-{time.time_ns() // 1_000_000}-{order_id[:8]}"


@contextmanager
def _unit_of_work(db: Session):
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def _product_for(order: Order) -> tuple[str, str]:
    name = ", ".join(f"{item.quantity}x {item.book.title}" for item in order.items)
    return name, f"Book order #{order.id[:8]}"


def _payer_for(db: Session, order: Order, phone: str | None = None, customer_name: str | None = None) -> Payer:
    user = db.query(User).filter(User.id == order.user_id).first()
    if not user:
        raise NotFound("User", order.user_id)
    return Payer(user_id=str(user.id), name=customer_name or user.name, email=user.email, phone=phone)


def _ensure_payable(order: Order) -> None:
    if order.payment_status == PaymentStatus.PAID.value:
        raise InvalidState("Order already paid")


def _void_previous_reference(db: Session, gateway: OPayClient, order: Order) -> None:
    """Close the order's current attempt at the gateway before a new one replaces it.

    A transport failure propagates so the old reference is never silently
    orphaned. If the gateway refuses to close it and reports it as paid, the
    order is settled instead of being charged twice.
    """
    previous = order.payment_reference
    if not previous:
        return

    closed = gateway.cancel(previous)
    if closed.ok:
        logger.info("Closed previous payment reference %s for order %s", previous, order.id)
        return

    status = gateway.query_status(previous)
    if status.ok and status.data and status.data.status == GatewayPaymentStatus.SUCCESS.value:
        logger.warning("Previous reference %s for order %s already succeeded, settling", previous, order.id)
        with _unit_of_work(db):
            _mark_paid(db, order)
        raise InvalidState("Order already paid")

    logger.warning(
        "Could not close previous reference %s for order %s (code=%s message=%s); replacing it",
        previous,
        order.id,
        closed.code,
        closed.message,
    )


def _record_attempt(db: Session, order: Order, reference: str, external_order_no: str | None) -> None:
    order_ledger.apply_order_update(
        db,
        order.id,
        OrderUpdate(
            payment_reference=reference,
            external_order_no=external_order_no,
            # A new attempt reopens a failed payment.
            payment_status=PaymentStatus.PENDING if order.payment_status == PaymentStatus.FAILED.value else None,
        ),
    )


def _log_failed_creation(order: Order, response: GatewayResponse) -> None:
    if response.ok or not order.payment_reference:
        return
    logger.warning(
        "Payment creation for order %s failed (code=%s); it still holds closed reference %s",
        order.id,
        response.code,
        order.payment_reference,
    )


def _successful_data(response: GatewayResponse):
    if not response.ok:
        raise PaymentInitiationFailed(response.code, response.message)
    if response.data is None:
        raise PaymentInitiationFailed(response.code, "response missing data")
    return response.data


def initiate_payment(
    db: Session,
    gateway: OPayClient,
    order_id: str,
    method: PaymentMethod,
    phone: str | None = None,
    customer_name: str | None = None,
) -> PaymentInitiation:
    order = order_ledger.get_order(db, order_id)
    _ensure_payable(order)
    payer = _payer_for(db, order, phone=phone, customer_name=customer_name)
    _void_previous_reference(db, gateway, order)

    config = gateway.config
    product_name, product_description = _product_for(order)
    reference = new_payment_reference(order.id)
    # The previous reference is closed by now. If creation fails the order keeps
    # pointing at it until the next attempt replaces it.
    response = gateway.create_payment(
        PaymentRequest(
            reference=reference,
            amount=order.total_amount,
            product_name=product_name,
            product_description=product_description,
            method=method,
            payer=payer,
            callback_url=config.callback_url,
            return_url=config.return_url,
            expire_minutes=config.expire_minutes,
        )
    )
    _log_failed_creation(order, response)
    data = _successful_data(response)

    stored_reference = data.reference or reference
    with _unit_of_work(db):
        _record_attempt(db, order, stored_reference, data.order_no)
    logger.info(
        "Payment %s initiated for order %s via %s (gateway order %s)",
        stored_reference,
        order.id,
        method.pay_method,
        data.order_no,
    )

    result = PaymentInitiation(
        payment_reference=stored_reference,
        external_order_no=data.order_no,
        status=data.status,
        reference_code=data.reference_code,
    )
    action = data.next_action
    if action is None:
        return result
    if action.action_type == "REDIRECT_3DS":
        return replace(result, redirect_url=action.redirect_url)
    if action.action_type == "TRANSFER_ACCOUNT":
        return replace(
            result,
            transfer_account=TransferAccount(
                account_number=action.transfer_account_number,
                bank_name=action.transfer_bank_name,
                expired_timestamp=action.expired_timestamp,
            ),
        )
    if action.action_type == "SHOW_USSD":
        return replace(result, ussd=action.ussd)
    if action.action_type == "SCAN_QR_CODE":
        return replace(result, qr_code=action.qr_code)
    return result


def initiate_express_checkout(
    db: Session,
    gateway: OPayClient,
    order_id: str,
    phone: str | None = None,
) -> CheckoutInitiation:
    order = order_ledger.get_order(db, order_id)
    _ensure_payable(order)
    payer = _payer_for(db, order, phone=phone)
    _void_previous_reference(db, gateway, order)

    config = gateway.config
    product_name, product_description = _product_for(order)
    reference = new_payment_reference(order.id)
    response = gateway.create_express_checkout(
        CheckoutRequest(
            reference=reference,
            amount=order.total_amount,
            product_name=product_name,
            product_description=product_description,
            payer=payer,
            return_url=config.return_url,
            callback_url=config.callback_url,
            expire_minutes=config.expire_minutes,
        )
    )
    _log_failed_creation(order, response)
    data = _successful_data(response)
    if not data.cashier_url:
        raise PaymentInitiationFailed(response.code, "response missing cashier URL")

    stored_reference = data.reference or reference
    with _unit_of_work(db):
        _record_attempt(db, order, stored_reference, data.order_no)
    logger.info("Cashier payment %s initiated for order %s", stored_reference, order.id)
    return CheckoutInitiation(
        payment_reference=stored_reference,
        external_order_no=data.order_no,
        cashier_url=data.cashier_url,
    )


def _mark_paid(db: Session, order: Order) -> bool:
    if order.payment_status == PaymentStatus.PAID.value:
        logger.info("Order %s already paid, skipping", order.id)
        return False

    order_ledger.update_payment_status(db, order.id, PaymentStatus.PAID)
    if order.order_status == OrderStatus.PROCESSING.value:
        order_ledger.update_order_status(db, order.id, OrderStatus.PURCHASED)
    try:
        order_ledger.decrement_stock_for_order(db, order.id)
    except InsufficientStock:
        logger.error("Order %s paid but stock ran out; needs manual reconciliation", order.id)
        raise
    logger.info("Order %s marked as paid", order.id)
    return True


def _mark_failed(db: Session, order: Order) -> bool:
    if order.payment_status == PaymentStatus.PAID.value:
        logger.warning("Rejecting failure signal for order %s: already paid", order.id)
        return False
    if order.payment_status == PaymentStatus.FAILED.value:
        return True

    order_ledger.update_payment_status(db, order.id, PaymentStatus.FAILED)
    logger.info("Order %s payment marked as failed", order.id)
    return True


def handle_callback(db: Session, reference: str, external_order_no: str | None, status: str) -> Order:
    """Apply a gateway notification. Raises NotFound for unknown references."""
    with _unit_of_work(db):
        order = order_ledger.get_order_by_payment_reference(db, reference, lock=True)
        if status == GatewayPaymentStatus.SUCCESS.value:
            _mark_paid(db, order)
        elif status in FAILED_GATEWAY_STATUSES:
            _mark_failed(db, order)
        else:
            logger.info("Callback status %s leaves order %s unchanged", status, order.id)

        if external_order_no and not order.external_order_no:
            order_ledger.apply_order_update(db, order.id, OrderUpdate(external_order_no=external_order_no))
    return order


def verify_payment(db: Session, order_id: str, reference: str | None, status: str) -> Order:
    """Manual settlement path, kept alongside the webhook for operators."""
    if status not in ("success", "failed"):
        raise ValidationFailed("status must be 'success' or 'failed'")

    with _unit_of_work(db):
        order = order_ledger.get_order_for_update(db, order_id)
        if reference and order.payment_reference and reference != order.payment_reference:
            logger.warning(
                "Manual verification for order %s names reference %s, order holds %s",
                order.id,
                reference,
                order.payment_reference,
            )
        if status == "success":
            _mark_paid(db, order)
        elif not _mark_failed(db, order):
            raise InvalidState("Cannot mark a paid order as failed")
    return order


def query_payment_status(gateway: OPayClient, reference: str) -> PaymentStatusResult:
    """Read-only: asks the gateway, never writes to the order."""
    response = gateway.query_status(reference)
    if not response.ok:
        raise GatewayError(response.code, response.message, action="query")
    if response.data is None:
        raise GatewayError(response.code, "response missing data", action="query")
    return PaymentStatusResult(
        reference=response.data.reference or reference,
        status=response.data.status,
        amount=response.data.amount,
        currency=response.data.currency,
    )


def cancel_payment(db: Session, gateway: OPayClient, reference: str) -> Order | None:
    response = gateway.cancel(reference)
    if not response.ok:
        raise GatewayError(response.code, response.message, action="cancel")

    with _unit_of_work(db):
        try:
            order = order_ledger.get_order_by_payment_reference(db, reference, lock=True)
        except NotFound:
            logger.warning("Payment %s closed at gateway but no order holds it", reference)
            return None
        _mark_failed(db, order)
    return order


def cancel_order(db: Session, gateway: OPayClient, order_id: str, requester_id: int) -> OrderSnapshot:
    """Delete an order, closing its live payment attempt at the gateway first.

    A pending reference left open could still be paid after the order is gone.
    If the gateway reports that attempt as already paid, the order is settled
    and the cancel is refused.
    """
    order = order_ledger.get_order(db, order_id)
    if order.user_id != requester_id:
        raise Unauthorized("Unauthorized to cancel this order")
    if order.payment_status == PaymentStatus.PENDING.value:
        _void_previous_reference(db, gateway, order)

    with _unit_of_work(db):
        snapshot = order_ledger.cancel_order(db, order_id, requester_id)
    return snapshot


def _refund_result(response: GatewayResponse, reference: str, original_reference: str | None = None) -> RefundResult:
    if not response.ok:
        raise GatewayError(response.code, response.message, action="refund")
    data = response.data
    return RefundResult(
        reference=(data.reference if data and data.reference else reference),
        status=data.status if data else None,
        amount=data.amount if data else None,
        currency=data.currency if data else None,
        refund_order_no=data.refund_order_no if data else None,
        original_reference=original_reference,
    )


def create_refund(
    db: Session,
    gateway: OPayClient,
    order_id: str,
    amount: Decimal | None = None,
    refund_way: str = "Original",
    receiver_bank_code: str | None = None,
    receiver_account_no: str | None = None,
) -> RefundResult:
    order = order_ledger.get_order(db, order_id)
    if order.payment_status != PaymentStatus.PAID.value or not order.payment_reference:
        raise InvalidState("Only paid orders can be refunded")

    refund_amount = quantize_amount(order.total_amount if amount is None else amount)
    if refund_amount <= 0 or refund_amount > order.total_amount:
        raise ValidationFailed(f"Refund amount must be between 0.01 and {order.total_amount}")

    reference = new_payment_reference(order.id, prefix=REFUND_REFERENCE_PREFIX)
    response = gateway.create_refund(
        RefundRequest(
            reference=reference,
            original_reference=order.payment_reference,
            amount=refund_amount,
            refund_way=refund_way,
            receiver_bank_code=receiver_bank_code,
            receiver_account_no=receiver_account_no,
        )
    )
    result = _refund_result(response, reference, original_reference=order.payment_reference)
    logger.info("Refund %s of %s requested for order %s", reference, refund_amount, order.id)
    return result


def query_refund_status(gateway: OPayClient, reference: str) -> RefundResult:
    return _refund_result(gateway.query_refund_status(reference), reference)
