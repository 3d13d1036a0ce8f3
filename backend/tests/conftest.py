import os
import sys
import tempfile
from typing import List, Optional

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Module-level stores open their database on import; keep test runs off the dev database.
os.environ.setdefault("GROOMQUOTE_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="groomquote-"), "market.sqlite3"))

from groomquote.models import Actor, QuoteOfferCreate, QuoteRequestCreate, UserProfile  # noqa: E402
from groomquote.services.market_store import MarketStore, utc_now_iso  # noqa: E402
from groomquote.services.payment_gateway import VirtualPaymentGateway  # noqa: E402
from groomquote.services.payment_orchestrator import PaymentOrchestrator  # noqa: E402
from groomquote.services.quote_lifecycle import QuoteLifecycle  # noqa: E402
from groomquote.services.review_gate import ReviewGate  # noqa: E402

ORIGIN = (37.5, 127.0)


class RecordingSink:
    def __init__(self, fail_for: Optional[str] = None):
        self.deliveries: List[dict] = []
        self.fail_for = fail_for

    def deliver(self, recipient_id, title, body, link=None, category="system"):
        if recipient_id == self.fail_for:
            raise RuntimeError("push backend unavailable")
        self.deliveries.append(
            {"recipient_id": recipient_id, "title": title, "body": body, "link": link, "category": category}
        )

    def recipients(self) -> List[str]:
        return [row["recipient_id"] for row in self.deliveries]


def add_user(
    store: MarketStore,
    user_id: str,
    role: str = "CUSTOMER",
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    business_name: Optional[str] = None,
) -> Actor:
    store.save_user(
        UserProfile(
            id=user_id,
            name=user_id.title(),
            role=role,
            latitude=latitude,
            longitude=longitude,
            business_name=business_name,
            created_at=utc_now_iso(),
        )
    )
    return Actor(user_id=user_id, role=role)


def request_payload(**overrides) -> QuoteRequestCreate:
    data = {
        "pet_type": "DOG",
        "pet_breed": "Poodle",
        "pet_age": 3,
        "pet_weight": 4.2,
        "service_type": "BASIC",
        "description": "Full groom before a trip",
        "latitude": ORIGIN[0],
        "longitude": ORIGIN[1],
        "address": "Seoul",
        "items": [{"name": "Nail trim", "price": 5000, "type": "ADDITIONAL"}],
    }
    data.update(overrides)
    return QuoteRequestCreate(**data)


def offer_payload(price: int = 40000) -> QuoteOfferCreate:
    return QuoteOfferCreate(price=price, description="Includes bath", estimated_time="2h")


@pytest.fixture
def store(tmp_path):
    return MarketStore(db_path=str(tmp_path / "market.sqlite3"))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def lifecycle(store, sink):
    return QuoteLifecycle(store=store, sink=sink, default_radius_km=5.0, notify_radius_km=5.0)


@pytest.fixture
def gateway():
    return VirtualPaymentGateway()


@pytest.fixture
def orchestrator(store, gateway, lifecycle, sink):
    return PaymentOrchestrator(store=store, gateway=gateway, lifecycle=lifecycle, sink=sink, order_id_prefix="T_")


@pytest.fixture
def reviews(store, sink):
    return ReviewGate(store=store, sink=sink)


@pytest.fixture
def market(store):
    """A customer at the origin plus two nearby businesses."""
    return {
        "customer": add_user(store, "cust", "CUSTOMER", *ORIGIN),
        "business_a": add_user(store, "biz_a", "BUSINESS", 37.501, 127.001, business_name="Fluffy Salon"),
        "business_b": add_user(store, "biz_b", "BUSINESS", 37.502, 127.002, business_name="Paw Spa"),
    }
