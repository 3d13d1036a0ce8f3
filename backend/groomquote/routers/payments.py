from fastapi import APIRouter, Depends

from groomquote.auth import require_actor
from groomquote.errors import MarketError
from groomquote.models import (
    Actor,
    Payment,
    PaymentCallback,
    PaymentCancelRequest,
    PaymentPreparation,
    PaymentPrepareRequest,
)
from groomquote.routers.common import raise_market_http_error
from groomquote.services.payment_orchestrator import payment_orchestrator

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/prepare", response_model=PaymentPreparation, status_code=201)
def prepare_payment(payload: PaymentPrepareRequest, actor: Actor = Depends(require_actor)):
    try:
        return payment_orchestrator.prepare_payment(actor, payload.offer_id, payload.method)
    except MarketError as exc:
        raise_market_http_error(exc)


# Provider success redirect; authenticated by the gateway confirmation itself.
@router.post("/confirm", response_model=Payment)
def confirm_payment(payload: PaymentCallback):
    try:
        return payment_orchestrator.confirm_payment(payload)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("", response_model=list[Payment])
def list_payments(actor: Actor = Depends(require_actor)):
    return payment_orchestrator.list_payments(actor)


@router.get("/offers/{offer_id}", response_model=Payment)
def get_payment_for_offer(offer_id: str, actor: Actor = Depends(require_actor)):
    try:
        return payment_orchestrator.payment_for_offer(actor, offer_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/{payment_id}", response_model=Payment)
def get_payment(payment_id: str, actor: Actor = Depends(require_actor)):
    try:
        return payment_orchestrator.get_payment(actor, payment_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.post("/{payment_id}/cancel", response_model=Payment)
def cancel_payment(
    payment_id: str,
    payload: PaymentCancelRequest,
    actor: Actor = Depends(require_actor),
):
    try:
        return payment_orchestrator.cancel_payment(actor, payment_id, payload.reason)
    except MarketError as exc:
        raise_market_http_error(exc)
