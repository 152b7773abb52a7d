from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_serializer

from bookstore.services.opay_client import (
    BankAccount,
    BankCard,
    BankTransfer,
    BankUssd,
    PaymentMethod,
    ReferenceCode,
    WalletQR,
)


class BankCardMethod(BaseModel):
    pay_method: Literal["BankCard"]
    card_holder_name: str
    card_number: str = Field(repr=False)
    cvv: str = Field(repr=False)
    expiry_month: str
    expiry_year: str

    def to_method(self) -> PaymentMethod:
        return BankCard(
            card_holder_name=self.card_holder_name,
            card_number=self.card_number,
            cvv=self.cvv,
            expiry_month=self.expiry_month,
            expiry_year=self.expiry_year,
        )


class BankTransferMethod(BaseModel):
    pay_method: Literal["BankTransfer"]

    def to_method(self) -> PaymentMethod:
        return BankTransfer()


class BankUssdMethod(BaseModel):
    pay_method: Literal["BankUssd"]
    bank_code: str

    def to_method(self) -> PaymentMethod:
        return BankUssd(bank_code=self.bank_code)


class BankAccountMethod(BaseModel):
    pay_method: Literal["BankAccount"]
    bank_account_number: str
    bank_code: str
    bvn: str = Field(repr=False)
    dob_day: str
    dob_month: str
    dob_year: str

    def to_method(self) -> PaymentMethod:
        return BankAccount(
            bank_account_number=self.bank_account_number,
            bank_code=self.bank_code,
            bvn=self.bvn,
            dob_day=self.dob_day,
            dob_month=self.dob_month,
            dob_year=self.dob_year,
        )


class ReferenceCodeMethod(BaseModel):
    pay_method: Literal["ReferenceCode"]

    def to_method(self) -> PaymentMethod:
        return ReferenceCode()


class WalletQRMethod(BaseModel):
    pay_method: Literal["OpayWalletNgQR"]

    def to_method(self) -> PaymentMethod:
        return WalletQR()


PaymentMethodRequest = Annotated[
    Union[
        BankCardMethod,
        BankTransferMethod,
        BankUssdMethod,
        BankAccountMethod,
        ReferenceCodeMethod,
        WalletQRMethod,
    ],
    Field(discriminator="pay_method"),
]


class PaymentInitiateRequest(BaseModel):
    order_id: str
    method: PaymentMethodRequest
    user_phone: str | None = None
    customer_name: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "3f0c1e2a-8d4b-4c55-9a5e-2b7f1d9c0a11",
                    "method": {"pay_method": "BankTransfer"},
                    "user_phone": "+2348012345678",
                }
            ]
        }
    }


class TransferAccountResponse(BaseModel):
    account_number: str | None = None
    bank_name: str | None = None
    expired_timestamp: int | None = None


class PaymentInitiateResponse(BaseModel):
    payment_reference: str
    external_order_no: str | None = None
    status: str | None = None
    redirect_url: str | None = None
    transfer_account: TransferAccountResponse | None = None
    ussd: str | None = None
    qr_code: str | None = None
    reference_code: str | None = None

    model_config = {"from_attributes": True}


class CheckoutInitiateRequest(BaseModel):
    order_id: str
    user_phone: str | None = None


class CheckoutInitiateResponse(BaseModel):
    payment_reference: str
    external_order_no: str | None = None
    cashier_url: str

    model_config = {"from_attributes": True}


class _AmountResponse(BaseModel):
    @field_serializer("amount", check_fields=False)
    def serialize_amount(self, value: Decimal | None) -> str | None:
        return None if value is None else format(value, "f")


class PaymentStatusResponse(_AmountResponse):
    reference: str
    status: str | None = None
    amount: Decimal | None = None
    currency: str | None = None

    model_config = {"from_attributes": True}


class PaymentCancelRequest(BaseModel):
    reference: str


class PaymentCancelResponse(BaseModel):
    reference: str
    cancelled: bool
    order_id: str | None = None
    payment_status: str | None = None


class PaymentVerifyRequest(BaseModel):
    order_id: str
    reference: str | None = None
    status: Literal["success", "failed"]


class PaymentVerifyResponse(BaseModel):
    order_id: str
    payment_status: str
    order_status: str


class RefundCreateRequest(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0)
    refund_way: Literal["Original", "BankAccount"] = "Original"
    receiver_bank_code: str | None = None
    receiver_account_no: str | None = None


class RefundResponse(_AmountResponse):
    reference: str
    status: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    refund_order_no: str | None = None
    original_reference: str | None = None

    model_config = {"from_attributes": True}


class OPayCallbackPayload(BaseModel):
    reference: str | None = None
    orderNo: str | None = None
    status: str | None = None
