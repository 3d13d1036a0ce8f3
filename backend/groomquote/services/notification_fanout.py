"""Derive who hears about each quote lifecycle transition.

Builders here are pure: they take already-loaded entities and return
``NotificationIntent`` values. Delivery happens in :func:`dispatch`, which the
engine calls only after the triggering transaction has committed, so a failed
delivery can never undo a state change.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol

from groomquote.config import settings
from groomquote.models import (
    SERVICE_TYPE_LABELS,
    ChatMessage,
    Payment,
    QuoteRequest,
    QuoteResponse,
    Review,
    UserProfile,
)
from groomquote.services.geo_index import within_radius

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def deliver(
        self,
        recipient_id: str,
        title: str,
        body: str,
        link: Optional[str] = None,
        category: str = "system",
    ) -> None: ...


@dataclass(frozen=True)
class NotificationIntent:
    recipient_id: str
    title: str
    body: str
    deep_link: str
    category: str = "quote"


def _service_label(request: QuoteRequest) -> str:
    return SERVICE_TYPE_LABELS.get(request.service_type, request.service_type.title())


def counterpart(role: str, request: QuoteRequest, offer: Optional[QuoteResponse] = None) -> Optional[str]:
    """Return the other participant's user id for a viewer with ``role``."""
    if role == "CUSTOMER":
        return offer.business_id if offer else None
    if role == "BUSINESS":
        return request.customer_id
    return None


def request_created(
    request: QuoteRequest,
    businesses: Iterable[UserProfile],
    radius_km: Optional[float] = None,
) -> List[NotificationIntent]:
    if request.latitude is None or request.longitude is None:
        return []
    radius = radius_km if radius_km is not None else settings.notify_radius_km
    candidates = [b for b in businesses if b.role == "BUSINESS" and b.notification_enabled]
    nearby = within_radius((request.latitude, request.longitude), radius, candidates)
    return [
        NotificationIntent(
            recipient_id=business.id,
            title="New quote request",
            body=f"A {_service_label(request)} request was posted within {radius:g}km.",
            deep_link=f"quote:{request.id}",
        )
        for business in nearby
    ]


def offer_submitted(request: QuoteRequest, offer: QuoteResponse, business: UserProfile) -> List[NotificationIntent]:
    return [
        NotificationIntent(
            recipient_id=request.customer_id,
            title="New quote offer",
            body=f"{business.display_name} offered {offer.price} for your {_service_label(request)} request.",
            deep_link=f"quote:{request.id}",
        )
    ]


def offer_accepted(request: QuoteRequest, offer: QuoteResponse, customer: UserProfile) -> List[NotificationIntent]:
    return [
        NotificationIntent(
            recipient_id=offer.business_id,
            title="Quote accepted",
            body=f"{customer.display_name} accepted your offer of {offer.price}.",
            deep_link=f"offer:{offer.id}",
        )
    ]


def completion_uploaded(
    request: QuoteRequest,
    offer: QuoteResponse,
    business: UserProfile,
) -> List[NotificationIntent]:
    return [
        NotificationIntent(
            recipient_id=request.customer_id,
            title="Grooming completed",
            body=f"{business.display_name} finished the grooming. Leave a review!",
            deep_link=f"offer:{offer.id}",
        )
    ]


def review_created(review: Review, customer: UserProfile) -> List[NotificationIntent]:
    return [
        NotificationIntent(
            recipient_id=review.business_id,
            title="New review",
            body=f"{customer.display_name} left a {review.rating}-star review.",
            deep_link=f"review:{review.id}",
            category="review",
        )
    ]


def request_cancelled(request: QuoteRequest, offers: Iterable[QuoteResponse]) -> List[NotificationIntent]:
    return [
        NotificationIntent(
            recipient_id=offer.business_id,
            title="Quote request cancelled",
            body=f"The customer cancelled the {_service_label(request)} request you bid on.",
            deep_link=f"quote:{request.id}",
        )
        for offer in offers
    ]


def payment_confirmed(payment: Payment) -> List[NotificationIntent]:
    return [
        NotificationIntent(
            recipient_id=payment.business_id,
            title="Payment received",
            body=f"Payment of {payment.amount} was confirmed for order {payment.order_id}.",
            deep_link=f"offer:{payment.quote_response_id}",
            category="payment",
        )
    ]


def chat_message_sent(message: ChatMessage, sender: UserProfile, recipient_id: str) -> List[NotificationIntent]:
    preview = message.content if len(message.content) <= 80 else f"{message.content[:77]}..."
    return [
        NotificationIntent(
            recipient_id=recipient_id,
            title=f"Message from {sender.display_name}",
            body=preview,
            deep_link=f"chat:{message.room_id}",
            category="chat",
        )
    ]


def dispatch(sink: Optional[NotificationSink], intents: Iterable[NotificationIntent]) -> int:
    """Deliver best-effort; returns how many deliveries the sink accepted."""
    if sink is None:
        return 0
    delivered = 0
    for intent in intents:
        try:
            sink.deliver(
                intent.recipient_id,
                intent.title,
                intent.body,
                intent.deep_link,
                category=intent.category,
            )
            delivered += 1
        except Exception:
            logger.exception("Notification delivery failed for %s", intent.recipient_id)
    return delivered
