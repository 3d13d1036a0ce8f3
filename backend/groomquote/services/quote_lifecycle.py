import json
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from groomquote.config import settings
from groomquote.errors import (
    MarketConflictError,
    MarketNotFoundError,
    MarketPermissionError,
    MarketStateError,
    MarketValidationError,
)
from groomquote.models import (
    Actor,
    QuoteOfferCreate,
    QuoteRequest,
    QuoteRequestCreate,
    QuoteRequestDetails,
    QuoteResponse,
)
from groomquote.services import notification_fanout as fanout
from groomquote.services.geo_index import within_radius
from groomquote.services.market_store import MarketSession, MarketStore, market_store, new_id, utc_now_iso
from groomquote.services.notification_fanout import NotificationSink
from groomquote.services.notification_store import notification_store

logger = logging.getLogger(__name__)

REQUEST_TRANSITIONS: Dict[str, Set[str]] = {
    "PENDING": {"OFFERED", "CANCELLED"},
    "OFFERED": {"ACCEPTED", "CANCELLED"},
    "ACCEPTED": {"COMPLETED"},
    "COMPLETED": set(),
    "CANCELLED": set(),
}

OPEN_FOR_OFFERS = ("PENDING", "OFFERED")


def advance_request(request: QuoteRequest, target: str) -> QuoteRequest:
    """Return a copy of ``request`` moved to ``target``; refuses any backward or skipping move."""
    allowed = REQUEST_TRANSITIONS.get(request.status, set())
    if target not in allowed:
        raise MarketStateError(f"Quote request cannot move from {request.status} to {target}")
    return request.model_copy(update={"status": target, "updated_at": utc_now_iso()})


def _log_transition(request_id: str, from_status: str, to_status: str, actor_user_id: str) -> None:
    payload = {
        "actor": actor_user_id,
        "from": from_status,
        "quote_request_id": request_id,
        "to": to_status,
    }
    logger.info("quote_transition=%s", json.dumps(payload, sort_keys=True))


def _validate_coordinates(latitude: Optional[float], longitude: Optional[float]) -> None:
    if (latitude is None) != (longitude is None):
        raise MarketValidationError("Latitude and longitude must be provided together")
    if latitude is not None and not -90.0 <= latitude <= 90.0:
        raise MarketValidationError("Latitude must be between -90 and 90")
    if longitude is not None and not -180.0 <= longitude <= 180.0:
        raise MarketValidationError("Longitude must be between -180 and 180")


def _clean_refs(refs: Sequence[str]) -> List[str]:
    return [ref.strip() for ref in refs if ref and ref.strip()]


class QuoteLifecycle:
    def __init__(
        self,
        store: MarketStore,
        sink: Optional[NotificationSink] = None,
        default_radius_km: float = settings.default_search_radius_km,
        notify_radius_km: float = settings.notify_radius_km,
    ) -> None:
        self.store = store
        self.sink = sink
        self.default_radius_km = default_radius_km
        self.notify_radius_km = notify_radius_km

    def create_request(self, actor: Actor, attrs: QuoteRequestCreate) -> QuoteRequest:
        if actor.role != "CUSTOMER":
            raise MarketPermissionError("Only customers can request quotes")
        _validate_coordinates(attrs.latitude, attrs.longitude)

        now_iso = utc_now_iso()
        request = QuoteRequest(
            id=new_id("qr"),
            customer_id=actor.user_id,
            pet_type=attrs.pet_type,
            pet_breed=attrs.pet_breed.strip(),
            pet_age=attrs.pet_age,
            pet_weight=attrs.pet_weight,
            service_type=attrs.service_type,
            description=attrs.description.strip(),
            latitude=attrs.latitude,
            longitude=attrs.longitude,
            address=attrs.address.strip(),
            status="PENDING",
            review_status="NOT_REVIEWED",
            preferred_date=attrs.preferred_date,
            pet_photos=_clean_refs(attrs.pet_photos),
            items=[item.model_copy(update={"id": ""}) for item in attrs.items],
            created_at=now_iso,
            updated_at=now_iso,
        )
        with self.store.transaction() as session:
            session.users.get(actor.user_id)
            saved = session.requests.save(request)
            businesses = session.users.query(role="BUSINESS")

        _log_transition(saved.id, "NEW", saved.status, actor.user_id)
        fanout.dispatch(self.sink, fanout.request_created(saved, businesses, radius_km=self.notify_radius_km))
        return saved

    def list_available(
        self,
        actor: Actor,
        origin: Optional[Tuple[float, float]] = None,
        radius_km: Optional[float] = None,
    ) -> List[QuoteRequest]:
        if actor.role != "BUSINESS":
            raise MarketPermissionError("Only businesses can browse quote requests")
        radius = self.default_radius_km if radius_km is None else radius_km
        if radius <= 0:
            raise MarketValidationError("Radius must be positive")
        if origin is not None:
            _validate_coordinates(origin[0], origin[1])

        with self.store.transaction() as session:
            business = session.users.get(actor.user_id)
            open_requests = session.requests.query(status=OPEN_FOR_OFFERS)

        center: Optional[Tuple[float, float]] = None
        if business.latitude is not None and business.longitude is not None:
            center = (business.latitude, business.longitude)
        elif origin is not None:
            center = origin
        if center is None:
            logger.info("Business %s has no location; returning all open requests", actor.user_id)
            return open_requests
        return within_radius(center, radius, open_requests)

    def submit_offer(self, actor: Actor, request_id: str, offer: QuoteOfferCreate) -> QuoteResponse:
        if actor.role != "BUSINESS":
            raise MarketPermissionError("Only businesses can submit quote offers")

        with self.store.transaction() as session:
            request = session.requests.get(request_id)
            if request.status not in OPEN_FOR_OFFERS:
                raise MarketStateError("Quote request is no longer accepting offers")
            if session.responses.first(quote_request_id=request.id, business_id=actor.user_id):
                raise MarketConflictError("Business already submitted an offer for this request")
            business = session.users.get(actor.user_id)

            now_iso = utc_now_iso()
            response = QuoteResponse(
                id=new_id("qo"),
                quote_request_id=request.id,
                business_id=business.id,
                price=offer.price,
                description=offer.description.strip(),
                estimated_time=offer.estimated_time.strip(),
                available_date=offer.available_date,
                status="PENDING",
                payment_status="NOT_PAID",
                created_at=now_iso,
                updated_at=now_iso,
            )
            session.responses.save(response)
            previous_status = request.status
            if request.status == "PENDING":
                request = session.requests.save(advance_request(request, "OFFERED"))

        if previous_status != request.status:
            _log_transition(request.id, previous_status, request.status, actor.user_id)
        fanout.dispatch(self.sink, fanout.offer_submitted(request, response, business))
        return response

    def apply_acceptance(
        self,
        session: MarketSession,
        request: QuoteRequest,
        offer: QuoteResponse,
        offers: Optional[List[QuoteResponse]] = None,
    ) -> Tuple[QuoteRequest, QuoteResponse]:
        """Accept ``offer`` and reject its siblings inside the caller's transaction."""
        if offers is None:
            offers = session.responses.query(quote_request_id=request.id)
        now_iso = utc_now_iso()
        for sibling in offers:
            if sibling.id != offer.id and sibling.status != "REJECTED":
                sibling.status = "REJECTED"
                sibling.updated_at = now_iso
                session.responses.save(sibling)
        offer.status = "ACCEPTED"
        offer.updated_at = now_iso
        session.responses.save(offer)
        request = session.requests.save(advance_request(request, "ACCEPTED"))
        session.recompute_completed_services(offer.business_id)
        return request, offer

    def accept_offer(self, actor: Actor, request_id: str, offer_id: str) -> QuoteResponse:
        with self.store.transaction() as session:
            request = session.requests.get(request_id)
            if request.customer_id != actor.user_id:
                raise MarketPermissionError("Only the requesting customer can accept an offer")
            if request.status in {"ACCEPTED", "COMPLETED"}:
                raise MarketStateError("Quote request has already been accepted")
            if request.status == "CANCELLED":
                raise MarketStateError("Quote request was cancelled")
            offers = session.responses.query(quote_request_id=request.id)
            target = next((offer for offer in offers if offer.id == offer_id), None)
            if target is None:
                raise MarketNotFoundError("Quote offer not found on this request")
            previous_status = request.status
            request, target = self.apply_acceptance(session, request, target, offers)
            customer = session.users.get(actor.user_id)

        _log_transition(request.id, previous_status, request.status, actor.user_id)
        fanout.dispatch(self.sink, fanout.offer_accepted(request, target, customer))
        return target

    def complete_with_photos(
        self,
        actor: Actor,
        offer_id: str,
        before_photos: Sequence[str],
        after_photos: Sequence[str],
    ) -> QuoteResponse:
        with self.store.transaction() as session:
            offer = session.responses.get(offer_id)
            if actor.role != "BUSINESS" or offer.business_id != actor.user_id:
                raise MarketPermissionError("Only the offering business can upload completion photos")
            if offer.status != "ACCEPTED":
                raise MarketStateError("Only accepted offers can be completed")
            if offer.payment_status != "PAID":
                raise MarketStateError("Payment must be confirmed before completing the service")
            request = session.requests.get(offer.quote_request_id)
            previous_status = request.status
            completed = advance_request(request, "COMPLETED")

            offer.before_photos = [*offer.before_photos, *_clean_refs(before_photos)]
            offer.after_photos = [*offer.after_photos, *_clean_refs(after_photos)]
            offer.updated_at = completed.updated_at
            session.responses.save(offer)
            request = session.requests.save(completed)
            business = session.users.get(actor.user_id)

        _log_transition(request.id, previous_status, request.status, actor.user_id)
        fanout.dispatch(self.sink, fanout.completion_uploaded(request, offer, business))
        return offer

    def cancel_request(self, actor: Actor, request_id: str) -> QuoteRequest:
        with self.store.transaction() as session:
            request = session.requests.get(request_id)
            if request.customer_id != actor.user_id and actor.role != "ADMIN":
                raise MarketPermissionError("Only the requesting customer can cancel this request")
            previous_status = request.status
            cancelled = advance_request(request, "CANCELLED")
            rejected: List[QuoteResponse] = []
            for offer in session.responses.query(quote_request_id=request.id, status="PENDING"):
                offer.status = "REJECTED"
                offer.updated_at = cancelled.updated_at
                session.responses.save(offer)
                rejected.append(offer)
            request = session.requests.save(cancelled)

        _log_transition(request.id, previous_status, request.status, actor.user_id)
        fanout.dispatch(self.sink, fanout.request_cancelled(request, rejected))
        return request

    def get_request_details(self, actor: Actor, request_id: str) -> QuoteRequestDetails:
        with self.store.transaction() as session:
            request = session.requests.get(request_id)
            offers = session.responses.query(quote_request_id=request.id)
        if request.customer_id == actor.user_id:
            return QuoteRequestDetails(request=request, offers=offers, viewer_role="customer")
        if actor.role == "BUSINESS":
            own = [offer for offer in offers if offer.business_id == actor.user_id]
            return QuoteRequestDetails(request=request, offers=own, viewer_role="business")
        raise MarketPermissionError("Not allowed to view this quote request")

    def list_customer_requests(self, actor: Actor) -> List[QuoteRequest]:
        with self.store.transaction() as session:
            return session.requests.query(order_by="created_at DESC, rowid DESC", customer_id=actor.user_id)

    def list_business_offers(self, actor: Actor) -> List[QuoteResponse]:
        if actor.role != "BUSINESS":
            raise MarketPermissionError("Only businesses have quote offers")
        with self.store.transaction() as session:
            return session.responses.query(order_by="created_at DESC, rowid DESC", business_id=actor.user_id)

    def get_offer(self, actor: Actor, offer_id: str) -> QuoteResponse:
        with self.store.transaction() as session:
            offer = session.responses.get(offer_id)
            request = session.requests.get(offer.quote_request_id)
        if actor.role != "ADMIN" and actor.user_id not in {offer.business_id, request.customer_id}:
            raise MarketPermissionError("Not allowed to view this quote offer")
        return offer


quote_lifecycle = QuoteLifecycle(store=market_store, sink=notification_store)
