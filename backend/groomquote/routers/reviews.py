from typing import Optional

from fastapi import APIRouter, Depends, Query

from groomquote.auth import require_actor
from groomquote.errors import MarketError
from groomquote.models import Actor, Review, ReviewCreateRequest, ReviewUpdateRequest
from groomquote.routers.common import raise_market_http_error
from groomquote.services.review_gate import review_gate

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.post("", response_model=Review, status_code=201)
def create_review(payload: ReviewCreateRequest, actor: Actor = Depends(require_actor)):
    try:
        return review_gate.create_review(
            actor,
            offer_id=payload.offer_id,
            rating=payload.rating,
            content=payload.content,
            tags=payload.tags,
        )
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/mine", response_model=list[Review])
def list_my_reviews(actor: Actor = Depends(require_actor)):
    return review_gate.list_customer_reviews(actor)


@router.get("/business/{business_id}", response_model=list[Review])
def list_business_reviews(
    business_id: str,
    tag: Optional[str] = Query(default=None),
    view: str = Query(default="all", pattern="^(all|best|recent)$"),
):
    try:
        if view == "best":
            return review_gate.best_business_reviews(business_id)
        if view == "recent":
            return review_gate.recent_business_reviews(business_id)
        return review_gate.list_business_reviews(business_id, tag=tag)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/offers/{offer_id}", response_model=Review)
def get_review_for_offer(offer_id: str):
    try:
        return review_gate.review_for_offer(offer_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/{review_id}", response_model=Review)
def get_review(review_id: str):
    try:
        return review_gate.get_review(review_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.put("/{review_id}", response_model=Review)
def update_review(review_id: str, payload: ReviewUpdateRequest, actor: Actor = Depends(require_actor)):
    try:
        return review_gate.update_review(
            actor,
            review_id,
            rating=payload.rating,
            content=payload.content,
            tags=payload.tags,
        )
    except MarketError as exc:
        raise_market_http_error(exc)


@router.delete("/{review_id}", status_code=204)
def delete_review(review_id: str, actor: Actor = Depends(require_actor)):
    try:
        review_gate.delete_review(actor, review_id)
    except MarketError as exc:
        raise_market_http_error(exc)
