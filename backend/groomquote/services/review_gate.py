import logging
from typing import Any, Dict, List, Optional, Sequence

from groomquote.errors import (
    MarketConflictError,
    MarketNotFoundError,
    MarketPermissionError,
    MarketStateError,
    MarketValidationError,
)
from groomquote.models import Actor, Review
from groomquote.services import notification_fanout as fanout
from groomquote.services.market_store import MarketSession, MarketStore, market_store, new_id, utc_now_iso
from groomquote.services.notification_fanout import NotificationSink
from groomquote.services.notification_store import notification_store

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
HIGHLIGHT_LIMIT = 5


def _validate_rating(rating: int) -> None:
    if not MIN_RATING <= rating <= MAX_RATING:
        raise MarketValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")


def _clean_tags(tags: Sequence[str]) -> List[str]:
    cleaned: List[str] = []
    for tag in tags:
        value = tag.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def _set_review_status(session: MarketSession, offer_id: Optional[str], review_status: str) -> None:
    if not offer_id:
        return
    offer = session.responses.find(offer_id)
    if offer is None:
        return
    request = session.requests.get(offer.quote_request_id)
    if request.review_status != review_status:
        session.requests.save(
            request.model_copy(update={"review_status": review_status, "updated_at": utc_now_iso()})
        )


class ReviewGate:
    """Admits at most one review per paid, accepted offer and keeps ratings in sync."""

    def __init__(self, store: MarketStore, sink: Optional[NotificationSink] = None) -> None:
        self.store = store
        self.sink = sink

    def create_review(
        self,
        actor: Actor,
        offer_id: str,
        rating: int,
        content: str = "",
        tags: Sequence[str] = (),
    ) -> Review:
        with self.store.transaction() as session:
            offer = session.responses.get(offer_id)
            request = session.requests.get(offer.quote_request_id)
            if request.customer_id != actor.user_id:
                raise MarketPermissionError("Only the requesting customer can review this offer")
            if session.reviews.first(quote_response_id=offer.id):
                raise MarketConflictError("A review already exists for this offer")
            _validate_rating(rating)
            payment = session.payments.first(quote_response_id=offer.id)
            if offer.status != "ACCEPTED" or payment is None or payment.status != "DONE":
                raise MarketStateError("Only accepted and paid offers can be reviewed")

            now_iso = utc_now_iso()
            review = Review(
                id=new_id("rv"),
                customer_id=actor.user_id,
                business_id=offer.business_id,
                quote_response_id=offer.id,
                rating=rating,
                content=content.strip(),
                tags=_clean_tags(tags),
                created_at=now_iso,
                updated_at=now_iso,
            )
            session.reviews.save(review)
            _set_review_status(session, offer.id, "REVIEWED")
            business = session.recompute_average_rating(offer.business_id)
            customer = session.users.get(actor.user_id)

        logger.info(
            "Review %s rated %s for business %s (average now %s)",
            review.id,
            review.rating,
            review.business_id,
            business.average_rating,
        )
        fanout.dispatch(self.sink, fanout.review_created(review, customer))
        return review

    def update_review(
        self,
        actor: Actor,
        review_id: str,
        rating: int,
        content: str = "",
        tags: Sequence[str] = (),
    ) -> Review:
        with self.store.transaction() as session:
            review = session.reviews.get(review_id)
            if review.customer_id != actor.user_id:
                raise MarketPermissionError("Only the author can edit this review")
            _validate_rating(rating)
            review = session.reviews.save(
                review.model_copy(
                    update={
                        "rating": rating,
                        "content": content.strip(),
                        "tags": _clean_tags(tags),
                        "updated_at": utc_now_iso(),
                    }
                )
            )
            session.recompute_average_rating(review.business_id)
        return review

    def delete_review(self, actor: Actor, review_id: str) -> None:
        with self.store.transaction() as session:
            review = session.reviews.get(review_id)
            if review.customer_id != actor.user_id and actor.role != "ADMIN":
                raise MarketPermissionError("Only the author can delete this review")
            session.reviews.delete(review.id)
            _set_review_status(session, review.quote_response_id, "NOT_REVIEWED")
            session.recompute_average_rating(review.business_id)
        logger.info("Review %s deleted by %s", review_id, actor.user_id)

    def get_review(self, review_id: str) -> Review:
        with self.store.transaction() as session:
            return session.reviews.get(review_id)

    def review_for_offer(self, offer_id: str) -> Review:
        with self.store.transaction() as session:
            review = session.reviews.first(quote_response_id=offer_id)
        if review is None:
            raise MarketNotFoundError("Review not found")
        return review

    def list_business_reviews(
        self,
        business_id: str,
        tag: Optional[str] = None,
        public_only: bool = True,
    ) -> List[Review]:
        filters: Dict[str, Any] = {"business_id": business_id}
        if public_only:
            filters["is_public"] = 1
        with self.store.transaction() as session:
            session.users.get(business_id)
            reviews = session.reviews.query(order_by="created_at DESC, rowid DESC", **filters)
        if tag:
            needle = tag.strip()
            reviews = [review for review in reviews if needle in review.tags]
        return reviews

    def list_customer_reviews(self, actor: Actor) -> List[Review]:
        with self.store.transaction() as session:
            return session.reviews.query(order_by="created_at DESC, rowid DESC", customer_id=actor.user_id)

    def best_business_reviews(self, business_id: str, limit: int = HIGHLIGHT_LIMIT) -> List[Review]:
        reviews = self.list_business_reviews(business_id)
        return sorted(reviews, key=lambda review: review.rating, reverse=True)[:limit]

    def recent_business_reviews(self, business_id: str, limit: int = HIGHLIGHT_LIMIT) -> List[Review]:
        return self.list_business_reviews(business_id)[:limit]


review_gate = ReviewGate(store=market_store, sink=notification_store)
