from collections import Counter
from typing import Dict

from groomquote.errors import MarketPermissionError, MarketValidationError
from groomquote.models import SERVICE_TYPE_LABELS, Actor, BusinessStatistics
from groomquote.services.market_store import MarketStore, market_store


def business_statistics(actor: Actor, business_id: str, store: MarketStore = market_store) -> BusinessStatistics:
    """Offer, revenue and review aggregates for one business, readable by that business or an admin."""
    if actor.role != "ADMIN" and actor.user_id != business_id:
        raise MarketPermissionError("Only the business itself can view its statistics")

    with store.transaction() as session:
        business = session.users.get(business_id)
        if business.role != "BUSINESS":
            raise MarketValidationError("Statistics are only available for business accounts")
        offers = session.responses.query(business_id=business_id)
        payments = session.payments.query(business_id=business_id, status="DONE")
        reviews = session.reviews.query(business_id=business_id)
        service_by_offer: Dict[str, str] = {}
        for payment in payments:
            offer = session.responses.get(payment.quote_response_id)
            request = session.requests.get(offer.quote_request_id)
            service_by_offer[offer.id] = SERVICE_TYPE_LABELS.get(request.service_type, request.service_type)

    accepted = [offer for offer in offers if offer.status == "ACCEPTED"]
    acceptance_rate = len(accepted) / len(offers) * 100 if offers else 0.0

    total_revenue = sum(payment.amount for payment in payments)
    revenue_by_month: Counter = Counter()
    revenue_by_service: Counter = Counter()
    for payment in payments:
        month = (payment.paid_at or payment.created_at)[:7]
        revenue_by_month[month] += payment.amount
        revenue_by_service[service_by_offer[payment.quote_response_id]] += payment.amount

    ratings = [review.rating for review in reviews]
    tags = Counter(tag for review in reviews for tag in review.tags)

    return BusinessStatistics(
        business_id=business.id,
        business_name=business.display_name,
        total_quote_offers=len(offers),
        accepted_quote_offers=len(accepted),
        acceptance_rate=round(acceptance_rate, 2),
        total_revenue=total_revenue,
        average_revenue=total_revenue // len(payments) if payments else 0,
        revenue_by_month=dict(revenue_by_month),
        revenue_by_service=dict(revenue_by_service),
        total_reviews=len(reviews),
        average_rating=round(sum(ratings) / len(ratings), 1) if ratings else 0.0,
        rating_distribution=dict(Counter(ratings)),
        popular_tags=dict(tags),
    )
