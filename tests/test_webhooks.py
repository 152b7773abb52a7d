from fastapi import status

from bookstore.services import order_ledger
from bookstore.services.order_ledger import OrderUpdate

ACK = {"code": "00000", "message": "SUCCESSFUL"}


def _order_with_reference(db, make_order, student, books, reference="BOOKMATE-1-abc"):
    order = make_order(student, [(books[0], 2)])
    order_ledger.apply_order_update(db, order.id, OrderUpdate(payment_reference=reference))
    db.commit()
    return order


def test_success_callback_settles_order(client, student, books, make_order, db):
    order = _order_with_reference(db, make_order, student, books)

    response = client.post(
        "/webhooks/opay",
        json={"reference": "BOOKMATE-1-abc", "orderNo": "2110001", "status": "SUCCESS"},
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == ACK
    db.refresh(order)
    db.refresh(books[0])
    assert order.payment_status == "paid"
    assert order.order_status == "purchased"
    assert order.external_order_no == "2110001"
    assert books[0].stock == 3


def test_wrapped_payload_is_accepted(client, student, books, make_order, db):
    order = _order_with_reference(db, make_order, student, books)

    response = client.post(
        "/webhooks/opay",
        json={
            "payload": {"reference": "BOOKMATE-1-abc", "orderNo": "2110001", "status": "FAIL"},
            "type": "transaction-status",
        },
    )

    assert response.json() == ACK
    db.refresh(order)
    assert order.payment_status == "failed"


def test_duplicate_success_callbacks_take_stock_once(client, student, books, make_order, db):
    _order_with_reference(db, make_order, student, books)
    body = {"reference": "BOOKMATE-1-abc", "orderNo": "2110001", "status": "SUCCESS"}

    for _ in range(3):
        assert client.post("/webhooks/opay", json=body).json() == ACK

    db.refresh(books[0])
    assert books[0].stock == 3


def test_failure_after_success_is_acknowledged_and_ignored(client, student, books, make_order, db):
    order = _order_with_reference(db, make_order, student, books)
    client.post("/webhooks/opay", json={"reference": "BOOKMATE-1-abc", "status": "SUCCESS"})

    response = client.post("/webhooks/opay", json={"reference": "BOOKMATE-1-abc", "status": "CLOSE"})

    assert response.json() == ACK
    db.refresh(order)
    assert order.payment_status == "paid"


def test_unknown_reference_is_acknowledged(client, db):
    response = client.post("/webhooks/opay", json={"reference": "BOOKMATE-9-nope", "status": "SUCCESS"})
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == ACK


def test_malformed_bodies_are_acknowledged(client, db):
    missing_status = client.post("/webhooks/opay", json={"reference": "BOOKMATE-1-abc"})
    not_json = client.post("/webhooks/opay", content=b"not json", headers={"Content-Type": "application/json"})
    a_list = client.post("/webhooks/opay", json=[1, 2, 3])

    for response in (missing_status, not_json, a_list):
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == ACK


def test_out_of_stock_at_settlement_leaves_order_pending(client, student, other_student, books, make_order, db):
    manual = books[1]
    first = make_order(student, [(manual, 1)])
    second = make_order(other_student, [(manual, 1)])
    order_ledger.apply_order_update(db, first.id, OrderUpdate(payment_reference="BOOKMATE-1-first"))
    order_ledger.apply_order_update(db, second.id, OrderUpdate(payment_reference="BOOKMATE-2-second"))
    db.commit()

    client.post("/webhooks/opay", json={"reference": "BOOKMATE-1-first", "status": "SUCCESS"})
    response = client.post("/webhooks/opay", json={"reference": "BOOKMATE-2-second", "status": "SUCCESS"})

    assert response.json() == ACK
    db.refresh(second)
    db.refresh(manual)
    assert second.payment_status == "pending"
    assert manual.stock == 0
