import hashlib
import hmac
from decimal import Decimal

import httpx
import pytest

from bookstore.errors import GatewayUnreachable
from bookstore.services.opay_client import (
    CASHIER_CREATE_PATH,
    PAYMENT_CLOSE_PATH,
    PAYMENT_CREATE_PATH,
    PAYMENT_METHODS,
    REFUND_CREATE_PATH,
    STATUS_QUERY_PATH,
    BankAccount,
    BankCard,
    BankTransfer,
    BankUssd,
    CheckoutRequest,
    Payer,
    PaymentRequest,
    ReferenceCode,
    RefundRequest,
    WalletQR,
    normalize_response,
    sign_body,
)
from tests.opay_fakes import failed, ok

PAYER = Payer(user_id="7", name="Ada Student", email="student@example.com", phone="+2348012345678")


def _payment_request(method, amount=Decimal("1200.50")) -> PaymentRequest:
    return PaymentRequest(
        reference="BOOKMATE-1700000000000-abcdef12",
        amount=amount,
        product_name="1x Lab Manual",
        product_description="Book order #abcdef12",
        method=method,
        payer=PAYER,
        callback_url="https://api.example.com/webhooks/opay",
        return_url="https://api.example.com/api/payments/return",
        expire_minutes=30,
    )


def test_create_payment_uses_public_key_and_minor_units(gateway, opay):
    gateway.create_payment(_payment_request(BankTransfer()))

    request = opay.calls(PAYMENT_CREATE_PATH)[0]
    assert request.url.host == "testapi.opaycheckout.com"
    assert request.headers["Authorization"] == "Bearer OPAYPUB_test_public"
    assert request.headers["MerchantId"] == "256612345678901"
    body = opay.body(request)
    assert body["amount"] == {"currency": "NGN", "total": 120050}
    assert body["payMethod"] == "BankTransfer"
    assert body["country"] == "NG"
    assert body["product"] == {"name": "1x Lab Manual", "description": "Book order #abcdef12"}
    assert body["customerName"] == "Ada Student"
    assert body["userPhone"] == "+2348012345678"
    assert body["userInfo"]["userEmail"] == "student@example.com"
    assert body["expireAt"] == 30


def test_signed_calls_carry_hmac_of_exact_body(gateway, opay, payment_config):
    gateway.query_status("BOOKMATE-1-abc")
    gateway.cancel("BOOKMATE-1-abc")

    for path in (STATUS_QUERY_PATH, PAYMENT_CLOSE_PATH):
        request = opay.calls(path)[0]
        expected = hmac.new(payment_config.secret_key.encode(), request.content, hashlib.sha512).hexdigest()
        assert request.headers["Authorization"] == f"Bearer {expected}"
        assert request.headers["MerchantId"] == payment_config.merchant_id
        assert opay.body(request) == {"reference": "BOOKMATE-1-abc", "country": "NG"}


def test_signed_body_is_compact_json(gateway, opay):
    gateway.cancel("BOOKMATE-1-abc")

    request = opay.calls(PAYMENT_CLOSE_PATH)[0]
    assert request.content == b'{"reference":"BOOKMATE-1-abc","country":"NG"}'
    assert sign_body(request.content, "OPAYPRV_test_secret") in request.headers["Authorization"]


def test_bank_card_enables_3ds_and_omits_customer_fields(gateway, opay):
    method = BankCard(
        card_holder_name="Ada Student",
        card_number="5399830000000008",
        cvv="100",
        expiry_month="05",
        expiry_year="30",
    )
    gateway.create_payment(_payment_request(method))

    body = opay.body(opay.calls(PAYMENT_CREATE_PATH)[0])
    assert body["payMethod"] == "BankCard"
    assert body["bankcard"]["enable3DS"] is True
    assert body["bankcard"]["cardNumber"] == "5399830000000008"
    assert "customerName" not in body


def test_bank_account_wire_fields(gateway, opay):
    method = BankAccount(
        bank_account_number="0123456789",
        bank_code="058",
        bvn="22222222222",
        dob_day="01",
        dob_month="02",
        dob_year="2001",
    )
    gateway.create_payment(_payment_request(method))

    body = opay.body(opay.calls(PAYMENT_CREATE_PATH)[0])
    assert body["bankAccountNumber"] == "0123456789"
    assert body["bankCode"] == "058"
    assert body["bvn"] == "22222222222"
    assert (body["dobDay"], body["dobMonth"], body["dobYear"]) == ("01", "02", "2001")


def test_ussd_reference_code_and_wallet_fields(gateway, opay):
    gateway.create_payment(_payment_request(BankUssd(bank_code="058")))
    gateway.create_payment(_payment_request(ReferenceCode()))
    gateway.create_payment(_payment_request(WalletQR()))

    ussd, reference_code, wallet = [opay.body(r) for r in opay.calls(PAYMENT_CREATE_PATH)]
    assert ussd["bankCode"] == "058"
    assert reference_code["merchantName"] == "BOOKMATE"
    assert reference_code["notify"]["notifyUserEmail"] == "student@example.com"
    assert wallet["payMethod"] == "OpayWalletNgQR"
    assert "customerName" not in wallet


def test_payment_methods_registry_covers_every_variant():
    assert set(PAYMENT_METHODS) == {
        "BankCard",
        "BankTransfer",
        "BankUssd",
        "BankAccount",
        "ReferenceCode",
        "OpayWalletNgQR",
    }


def test_express_checkout_parses_cashier_url(gateway, opay):
    opay.respond(
        CASHIER_CREATE_PATH,
        ok({"reference": "BOOKMATE-1-abc", "orderNo": "2110001", "cashierUrl": "https://cashier.opaycheckout.com/x"}),
    )

    response = gateway.create_express_checkout(
        CheckoutRequest(
            reference="BOOKMATE-1-abc",
            amount=Decimal("2500"),
            product_name="1x Calculus I",
            product_description="Book order #abc",
            payer=PAYER,
            return_url="https://api.example.com/api/payments/return",
        )
    )

    assert response.ok
    assert response.data.cashier_url == "https://cashier.opaycheckout.com/x"
    assert response.data.order_no == "2110001"
    request = opay.calls(CASHIER_CREATE_PATH)[0]
    assert request.headers["Authorization"] == "Bearer OPAYPUB_test_public"
    assert "payMethod" not in opay.body(request)


def test_refund_request_shape(gateway, opay):
    gateway.create_refund(
        RefundRequest(
            reference="REFUND-1-abc",
            original_reference="BOOKMATE-1-abc",
            amount=Decimal("500"),
            refund_way="BankAccount",
            receiver_bank_code="058",
            receiver_account_no="0123456789",
        )
    )

    body = opay.body(opay.calls(REFUND_CREATE_PATH)[0])
    assert body["originalReference"] == "BOOKMATE-1-abc"
    assert body["amount"] == {"currency": "NGN", "total": 50000}
    assert body["refundWay"] == "BankAccount"
    assert body["receiver"] == {"bankCode": "058", "bankAccountNo": "0123456789"}
    assert "callbackUrl" not in body


def test_normalize_response_reads_next_action_and_amount():
    response = normalize_response(
        ok(
            {
                "reference": "BOOKMATE-1-abc",
                "orderNo": "2110001",
                "status": "PENDING",
                "amount": {"total": 120050, "currency": "NGN"},
                "nextAction": {
                    "actionType": "TRANSFER_ACCOUNT",
                    "transferAccountNumber": "6012345678",
                    "transferBankName": "OPay",
                    "expiredTimestamp": 1700001800000,
                },
            }
        )
    )

    assert response.ok
    assert response.data.amount == Decimal("1200.50")
    assert response.data.currency == "NGN"
    assert response.data.next_action.action_type == "TRANSFER_ACCOUNT"
    assert response.data.next_action.transfer_account_number == "6012345678"


def test_non_success_code_is_returned_not_raised(gateway, opay):
    opay.respond(PAYMENT_CREATE_PATH, failed("02006", "Merchant not found"))

    response = gateway.create_payment(_payment_request(BankTransfer()))

    assert not response.ok
    assert response.code == "02006"
    assert response.message == "Merchant not found"
    assert response.data is None


def test_http_error_with_json_body_is_normalized(gateway, opay):
    opay.respond(PAYMENT_CLOSE_PATH, httpx.Response(400, json=failed("02001", "Request parameters error")))

    response = gateway.cancel("BOOKMATE-1-abc")

    assert response.code == "02001"
    assert not response.ok


def test_non_json_body_raises_unreachable(gateway, opay):
    opay.respond(PAYMENT_CLOSE_PATH, httpx.Response(502, text="<html>Bad Gateway</html>"))

    with pytest.raises(GatewayUnreachable):
        gateway.cancel("BOOKMATE-1-abc")


def test_transport_error_raises_unreachable(gateway, opay):
    opay.respond(PAYMENT_CREATE_PATH, httpx.ConnectError("connection refused"))

    with pytest.raises(GatewayUnreachable):
        gateway.create_payment(_payment_request(BankTransfer()))


def test_timeout_raises_unreachable(gateway, opay):
    opay.respond(PAYMENT_CLOSE_PATH, httpx.ReadTimeout("timed out"))

    with pytest.raises(GatewayUnreachable, match="timed out"):
        gateway.cancel("BOOKMATE-1-abc")


def test_payment_creation_is_not_retried(gateway, opay):
    opay.respond(PAYMENT_CREATE_PATH, httpx.ConnectError("connection refused"))

    with pytest.raises(GatewayUnreachable):
        gateway.create_payment(_payment_request(BankTransfer()))

    assert len(opay.calls(PAYMENT_CREATE_PATH)) == 1


def test_status_query_retries_transport_failures(gateway, opay):
    opay.respond(
        STATUS_QUERY_PATH,
        httpx.ConnectError("connection refused"),
        ok({"reference": "BOOKMATE-1-abc", "status": "SUCCESS"}),
    )

    response = gateway.query_status("BOOKMATE-1-abc")

    assert response.data.status == "SUCCESS"
    assert len(opay.calls(STATUS_QUERY_PATH)) == 2


def test_status_query_gives_up_after_configured_attempts(gateway, opay):
    opay.respond(STATUS_QUERY_PATH, httpx.ConnectError("connection refused"))

    with pytest.raises(GatewayUnreachable):
        gateway.query_status("BOOKMATE-1-abc")

    assert len(opay.calls(STATUS_QUERY_PATH)) == 2


def test_status_query_does_not_retry_gateway_answers(gateway, opay):
    opay.respond(STATUS_QUERY_PATH, failed("02000", "authentication failed"))

    response = gateway.query_status("BOOKMATE-1-abc")

    assert not response.ok
    assert len(opay.calls(STATUS_QUERY_PATH)) == 1
