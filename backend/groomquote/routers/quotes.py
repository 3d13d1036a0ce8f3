from typing import Optional

from fastapi import APIRouter, Depends, Query

from groomquote.auth import require_actor
from groomquote.errors import MarketError
from groomquote.models import (
    Actor,
    CompletionPhotosRequest,
    QuoteOfferCreate,
    QuoteRequest,
    QuoteRequestCreate,
    QuoteRequestDetails,
    QuoteResponse,
)
from groomquote.routers.common import raise_market_http_error
from groomquote.services.quote_lifecycle import quote_lifecycle

router = APIRouter(tags=["quotes"])


@router.post("/quotes", response_model=QuoteRequest, status_code=201)
def create_quote_request(payload: QuoteRequestCreate, actor: Actor = Depends(require_actor)):
    try:
        return quote_lifecycle.create_request(actor, payload)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/quotes/available", response_model=list[QuoteRequest])
def list_available_requests(
    latitude: Optional[float] = Query(default=None),
    longitude: Optional[float] = Query(default=None),
    radius_km: Optional[float] = Query(default=None),
    actor: Actor = Depends(require_actor),
):
    origin = (latitude, longitude) if latitude is not None and longitude is not None else None
    try:
        return quote_lifecycle.list_available(actor, origin=origin, radius_km=radius_km)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/quotes/mine", response_model=list[QuoteRequest])
def list_my_requests(actor: Actor = Depends(require_actor)):
    return quote_lifecycle.list_customer_requests(actor)


@router.get("/quotes/{quote_request_id}", response_model=QuoteRequestDetails)
def get_quote_request(quote_request_id: str, actor: Actor = Depends(require_actor)):
    try:
        return quote_lifecycle.get_request_details(actor, quote_request_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.post("/quotes/{quote_request_id}/offers", response_model=QuoteResponse, status_code=201)
def submit_quote_offer(
    quote_request_id: str,
    payload: QuoteOfferCreate,
    actor: Actor = Depends(require_actor),
):
    try:
        return quote_lifecycle.submit_offer(actor, quote_request_id, payload)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.post("/quotes/{quote_request_id}/offers/{offer_id}/accept", response_model=QuoteResponse)
def accept_quote_offer(quote_request_id: str, offer_id: str, actor: Actor = Depends(require_actor)):
    try:
        return quote_lifecycle.accept_offer(actor, quote_request_id, offer_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.post("/quotes/{quote_request_id}/cancel", response_model=QuoteRequest)
def cancel_quote_request(quote_request_id: str, actor: Actor = Depends(require_actor)):
    try:
        return quote_lifecycle.cancel_request(actor, quote_request_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/offers/mine", response_model=list[QuoteResponse])
def list_my_offers(actor: Actor = Depends(require_actor)):
    try:
        return quote_lifecycle.list_business_offers(actor)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/offers/{offer_id}", response_model=QuoteResponse)
def get_quote_offer(offer_id: str, actor: Actor = Depends(require_actor)):
    try:
        return quote_lifecycle.get_offer(actor, offer_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.post("/offers/{offer_id}/complete", response_model=QuoteResponse)
def complete_quote_offer(
    offer_id: str,
    payload: CompletionPhotosRequest,
    actor: Actor = Depends(require_actor),
):
    try:
        return quote_lifecycle.complete_with_photos(actor, offer_id, payload.before_photos, payload.after_photos)
    except MarketError as exc:
        raise_market_http_error(exc)
