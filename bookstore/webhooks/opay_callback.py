import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from bookstore.errors import BookstoreError
from bookstore.models import get_db
from bookstore.schemas.payments import OPayCallbackPayload
from bookstore.services import payment_service

router = APIRouter()
logger = logging.getLogger(__name__)

ACKNOWLEDGEMENT = {"code": "00000", "message": "SUCCESSFUL"}


def parse_callback(body: object) -> OPayCallbackPayload | None:
    """OPay posts either the fields directly or wrapped under "payload"."""
    if not isinstance(body, dict):
        return None
    if isinstance(body.get("payload"), dict):
        body = body["payload"]
    try:
        return OPayCallbackPayload.model_validate(body)
    except ValidationError:
        return None


@router.post(
    "/opay",
    summary="OPay payment notification",
)
async def opay_callback(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receives OPay status notifications and settles the matching order.
    Always acknowledges so OPay stops retrying; problems are logged instead.
    Idempotent: repeated SUCCESS notifications never take stock twice.
    """
    try:
        body = await request.json()
    except ValueError as e:
        logger.error("Invalid JSON in OPay callback: %s", e)
        return ACKNOWLEDGEMENT

    callback = parse_callback(body)
    if callback is None or not callback.reference or not callback.status:
        logger.warning("OPay callback missing reference or status: %s", body)
        return ACKNOWLEDGEMENT

    try:
        order = payment_service.handle_callback(db, callback.reference, callback.orderNo, callback.status.upper())
        logger.info(
            "OPay callback %s for reference %s applied to order %s",
            callback.status,
            callback.reference,
            order.id,
        )
    except BookstoreError as e:
        logger.warning("OPay callback for reference %s not applied: %s", callback.reference, e.message)
    except Exception:
        logger.exception("Error processing OPay callback for reference %s", callback.reference)

    return ACKNOWLEDGEMENT
