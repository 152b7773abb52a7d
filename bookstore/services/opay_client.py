"""OPay international checkout client.

Stateless adapter: builds wire requests, authenticates them and normalizes the
answers. It holds no business rules and never touches the database.

The provider authenticates the two classes of calls differently and this must
not be mixed up:

- payment creation (direct and cashier) sends the merchant public key as the
  bearer token;
- every other call (status, close, refund) sends a hex HMAC-SHA512 of the
  exact request body, keyed by the merchant secret key.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar, Union

import httpx
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from bookstore.config import PaymentConfig
from bookstore.errors import GatewayUnreachable
from bookstore.services.money import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00000"

PAYMENT_CREATE_PATH = "/api/v1/international/payment/create"
CASHIER_CREATE_PATH = "/api/v1/international/cashier/create"
STATUS_QUERY_PATH = "/api/v1/international/cashier/status"
PAYMENT_CLOSE_PATH = "/api/v1/international/payment/close"
REFUND_CREATE_PATH = "/api/v1/international/payment/refund/create"
REFUND_QUERY_PATH = "/api/v1/international/payment/refund/query"


@dataclass(frozen=True)
class Payer:
    user_id: str
    name: str
    email: str | None = None
    phone: str | None = None


def _customer_fields(payer: Payer) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "customerName": payer.name,
        "userInfo": {
            "userId": payer.user_id,
            "userName": payer.name,
            "userEmail": payer.email,
            "userMobile": payer.phone,
        },
    }
    if payer.phone:
        fields["userPhone"] = payer.phone
    return fields


# Payment methods. Each variant only knows the wire fields it needs.


@dataclass(frozen=True)
class BankCard:
    pay_method: ClassVar[str] = "BankCard"

    card_holder_name: str
    card_number: str
    cvv: str
    expiry_month: str
    expiry_year: str

    def wire_fields(self, payer: Payer, merchant_name: str) -> dict[str, Any]:
        return {
            "bankcard": {
                "cardHolderName": self.card_holder_name,
                "cardNumber": self.card_number,
                "cvv": self.cvv,
                "enable3DS": True,
                "expiryMonth": self.expiry_month,
                "expiryYear": self.expiry_year,
            }
        }


@dataclass(frozen=True)
class BankTransfer:
    pay_method: ClassVar[str] = "BankTransfer"

    def wire_fields(self, payer: Payer, merchant_name: str) -> dict[str, Any]:
        return _customer_fields(payer)


@dataclass(frozen=True)
class BankUssd:
    pay_method: ClassVar[str] = "BankUssd"

    bank_code: str

    def wire_fields(self, payer: Payer, merchant_name: str) -> dict[str, Any]:
        return {**_customer_fields(payer), "bankCode": self.bank_code}


@dataclass(frozen=True)
class BankAccount:
    pay_method: ClassVar[str] = "BankAccount"

    bank_account_number: str
    bank_code: str
    bvn: str
    dob_day: str
    dob_month: str
    dob_year: str

    def wire_fields(self, payer: Payer, merchant_name: str) -> dict[str, Any]:
        return {
            **_customer_fields(payer),
            "bankAccountNumber": self.bank_account_number,
            "bankCode": self.bank_code,
            "bvn": self.bvn,
            "dobDay": self.dob_day,
            "dobMonth": self.dob_month,
            "dobYear": self.dob_year,
        }


@dataclass(frozen=True)
class ReferenceCode:
    pay_method: ClassVar[str] = "ReferenceCode"

    def wire_fields(self, payer: Payer, merchant_name: str) -> dict[str, Any]:
        return {
            "merchantName": merchant_name,
            "notify": {
                "notifyUserName": payer.name,
                "notifyLanguage": "English",
                "notifyMethod": "BOTH",
                "notifyUserEmail": payer.email,
                "notifyUserMobile": payer.phone or "",
            },
        }


@dataclass(frozen=True)
class WalletQR:
    pay_method: ClassVar[str] = "OpayWalletNgQR"

    def wire_fields(self, payer: Payer, merchant_name: str) -> dict[str, Any]:
        return {}


PaymentMethod = Union[BankCard, BankTransfer, BankUssd, BankAccount, ReferenceCode, WalletQR]


@dataclass(frozen=True)
class PaymentRequest:
    reference: str
    amount: Decimal
    product_name: str
    product_description: str
    method: PaymentMethod
    payer: Payer
    callback_url: str | None = None
    return_url: str | None = None
    expire_minutes: int | None = None


@dataclass(frozen=True)
class CheckoutRequest:
    reference: str
    amount: Decimal
    product_name: str
    product_description: str
    payer: Payer
    return_url: str
    callback_url: str | None = None
    expire_minutes: int | None = None


@dataclass(frozen=True)
class RefundRequest:
    reference: str
    original_reference: str
    amount: Decimal
    refund_way: str = "Original"  # Original | BankAccount
    callback_url: str | None = None
    receiver_bank_code: str | None = None
    receiver_account_no: str | None = None


# Normalized responses


@dataclass(frozen=True)
class NextAction:
    action_type: str
    redirect_url: str | None = None
    transfer_account_number: str | None = None
    transfer_bank_name: str | None = None
    expired_timestamp: int | None = None
    ussd: str | None = None
    qr_code: str | None = None


@dataclass(frozen=True)
class PaymentData:
    reference: str | None
    order_no: str | None
    status: str | None
    amount: Decimal | None = None
    currency: str | None = None
    next_action: NextAction | None = None
    reference_code: str | None = None
    cashier_url: str | None = None
    failure_code: str | None = None
    failure_reason: str | None = None
    refund_order_no: str | None = None


@dataclass(frozen=True)
class GatewayResponse:
    code: str
    message: str
    data: PaymentData | None = None
    raw: dict = field(default_factory=dict, repr=False)

    @property
    def ok(self) -> bool:
        return self.code == SUCCESS_CODE


def _parse_next_action(value: Any) -> NextAction | None:
    if not isinstance(value, dict) or not value.get("actionType"):
        return None
    return NextAction(
        action_type=value["actionType"],
        redirect_url=value.get("redirectUrl"),
        transfer_account_number=value.get("transferAccountNumber"),
        transfer_bank_name=value.get("transferBankName"),
        expired_timestamp=value.get("expiredTimestamp"),
        ussd=value.get("ussd"),
        qr_code=value.get("qrCode"),
    )


def _parse_payment_data(value: Any) -> PaymentData | None:
    if not isinstance(value, dict):
        return None
    amount = None
    currency = None
    amount_block = value.get("amount")
    if isinstance(amount_block, dict):
        currency = amount_block.get("currency")
        if amount_block.get("total") is not None:
            amount = from_minor_units(amount_block["total"])
    return PaymentData(
        reference=value.get("reference"),
        order_no=value.get("orderNo"),
        status=value.get("status"),
        amount=amount,
        currency=currency,
        next_action=_parse_next_action(value.get("nextAction")),
        reference_code=value.get("referenceCode"),
        cashier_url=value.get("cashierUrl"),
        failure_code=value.get("failureCode"),
        failure_reason=value.get("failureReason"),
        refund_order_no=value.get("refundOrderNo"),
    )


def normalize_response(payload: dict) -> GatewayResponse:
    return GatewayResponse(
        code=str(payload.get("code", "")),
        message=str(payload.get("message", "")),
        data=_parse_payment_data(payload.get("data")),
        raw=payload,
    )


def sign_body(body: bytes, secret_key: str) -> str:
    return hmac.new(secret_key.encode("utf-8"), body, hashlib.sha512).hexdigest()


def serialize_body(payload: dict) -> bytes:
    """Compact JSON; the signature is computed over exactly these bytes."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _drop_none(payload: dict) -> dict:
    cleaned = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, dict):
            value = _drop_none(value)
        cleaned[key] = value
    return cleaned


class OPayClient:
    def __init__(self, config: PaymentConfig, http_client: httpx.Client | None = None):
        self.config = config
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=config.timeout_seconds)

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()

    def __enter__(self) -> "OPayClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _amount(self, amount: Decimal) -> dict[str, Any]:
        return {"currency": self.config.currency, "total": to_minor_units(amount)}

    def _post(self, path: str, payload: dict, *, signed: bool) -> GatewayResponse:
        body = serialize_body(payload)
        token = sign_body(body, self.config.secret_key) if signed else self.config.public_key
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
            "MerchantId": self.config.merchant_id,
        }
        url = f"{self.config.gateway_base_url}{path}"
        try:
            response = self._http.post(url, content=body, headers=headers, timeout=self.config.timeout_seconds)
        except httpx.TimeoutException as exc:
            logger.error("OPay request to %s timed out after %ss", path, self.config.timeout_seconds)
            raise GatewayUnreachable(f"OPay request to {path} timed out") from exc
        except httpx.TransportError as exc:
            logger.error("OPay request to %s failed: %s", path, exc)
            raise GatewayUnreachable(f"OPay is unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("OPay returned non-JSON body for %s (HTTP %s)", path, response.status_code)
            raise GatewayUnreachable(f"OPay returned an unreadable response (HTTP {response.status_code})") from exc
        if not isinstance(data, dict):
            raise GatewayUnreachable(f"OPay returned an unexpected response (HTTP {response.status_code})")

        result = normalize_response(data)
        if not result.ok:
            logger.warning("OPay %s answered code=%s message=%s", path, result.code, result.message)
        return result

    def _base_payment_fields(self, reference: str, amount: Decimal, name: str, description: str) -> dict[str, Any]:
        return {
            "reference": reference,
            "amount": self._amount(amount),
            "product": {"name": name, "description": description},
            "country": self.config.country,
        }

    def build_payment_payload(self, request: PaymentRequest) -> dict[str, Any]:
        payload = self._base_payment_fields(
            request.reference, request.amount, request.product_name, request.product_description
        )
        payload.update(
            {
                "payMethod": request.method.pay_method,
                "callbackUrl": request.callback_url,
                "returnUrl": request.return_url,
                "expireAt": request.expire_minutes,
            }
        )
        payload.update(request.method.wire_fields(request.payer, self.config.merchant_name))
        return _drop_none(payload)

    def build_checkout_payload(self, request: CheckoutRequest) -> dict[str, Any]:
        payload = self._base_payment_fields(
            request.reference, request.amount, request.product_name, request.product_description
        )
        payload.update(
            {
                "callbackUrl": request.callback_url,
                "returnUrl": request.return_url,
                "expireAt": request.expire_minutes,
            }
        )
        payload.update(_customer_fields(request.payer))
        return _drop_none(payload)

    def create_payment(self, request: PaymentRequest) -> GatewayResponse:
        """Server-to-server payment for one of the direct pay methods."""
        return self._post(PAYMENT_CREATE_PATH, self.build_payment_payload(request), signed=False)

    def create_express_checkout(self, request: CheckoutRequest) -> GatewayResponse:
        """Hosted cashier page; the answer carries the cashier URL to redirect to."""
        return self._post(CASHIER_CREATE_PATH, self.build_checkout_payload(request), signed=False)

    def query_status(self, reference: str) -> GatewayResponse:
        # Read-only, so transport failures are safe to retry.
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.config.query_retries)),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
            retry=retry_if_exception_type(GatewayUnreachable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        payload = {"reference": reference, "country": self.config.country}
        return retrying(self._post, STATUS_QUERY_PATH, payload, signed=True)

    def cancel(self, reference: str) -> GatewayResponse:
        payload = {"reference": reference, "country": self.config.country}
        return self._post(PAYMENT_CLOSE_PATH, payload, signed=True)

    def create_refund(self, request: RefundRequest) -> GatewayResponse:
        payload: dict[str, Any] = {
            "reference": request.reference,
            "originalReference": request.original_reference,
            "country": self.config.country,
            "refundWay": request.refund_way,
            "amount": self._amount(request.amount),
            "callbackUrl": request.callback_url,
        }
        if request.receiver_bank_code or request.receiver_account_no:
            payload["receiver"] = {
                "bankCode": request.receiver_bank_code,
                "bankAccountNo": request.receiver_account_no,
            }
        return self._post(REFUND_CREATE_PATH, _drop_none(payload), signed=True)

    def query_refund_status(self, reference: str) -> GatewayResponse:
        payload = {"reference": reference, "country": self.config.country}
        return self._post(REFUND_QUERY_PATH, payload, signed=True)


PAYMENT_METHODS: dict[str, type] = {
    method.pay_method: method for method in (BankCard, BankTransfer, BankUssd, BankAccount, ReferenceCode, WalletQR)
}
