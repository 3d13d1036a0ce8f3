import pytest

from conftest import add_user, offer_payload, request_payload
from groomquote.errors import MarketPermissionError, MarketStateError, MarketValidationError
from groomquote.services.chat import OPENING_MESSAGE, ChatService


@pytest.fixture
def chat(store, sink):
    return ChatService(store=store, sink=sink)


@pytest.fixture
def bidding(lifecycle, market):
    created = lifecycle.create_request(market["customer"], request_payload())
    offer_a = lifecycle.submit_offer(market["business_a"], created.id, offer_payload(40000))
    offer_b = lifecycle.submit_offer(market["business_b"], created.id, offer_payload(35000))
    return created, offer_a, offer_b


def test_customer_opens_one_room_per_offer(chat, market, bidding):
    created, offer_a, offer_b = bidding

    room = chat.open_room(market["customer"], created.id, business_id="biz_a")
    again = chat.open_room(market["customer"], created.id, business_id="biz_a")
    from_business = chat.open_room(market["business_a"], created.id)
    other = chat.open_room(market["customer"], created.id, business_id="biz_b")

    assert room.id == again.id == from_business.id
    assert (room.customer_id, room.business_id, room.quote_response_id) == ("cust", "biz_a", offer_a.id)
    assert other.quote_response_id == offer_b.id
    details = chat.get_room(market["customer"], room.id)
    assert [m.content for m in details.messages] == [OPENING_MESSAGE]
    assert details.messages[0].system is True
    assert details.counterpart_name == "Fluffy Salon"


def test_open_room_checks_participants(chat, store, market, bidding):
    created, _, _ = bidding
    with pytest.raises(MarketValidationError):
        chat.open_room(market["customer"], created.id)
    with pytest.raises(MarketStateError):
        chat.open_room(market["customer"], created.id, business_id="biz_unknown")
    with pytest.raises(MarketPermissionError):
        chat.open_room(add_user(store, "stranger"), created.id, business_id="biz_a")
    with pytest.raises(MarketPermissionError):
        chat.open_room(add_user(store, "biz_c", "BUSINESS"), created.id)
    with pytest.raises(MarketPermissionError):
        chat.open_room(add_user(store, "boss", "ADMIN"), created.id, business_id="biz_a")


def test_rejected_offer_cannot_start_a_chat(chat, lifecycle, market, bidding):
    created, offer_a, _ = bidding
    kept = chat.open_room(market["customer"], created.id, business_id="biz_a")
    lifecycle.accept_offer(market["customer"], created.id, offer_a.id)

    with pytest.raises(MarketStateError):
        chat.open_room(market["customer"], created.id, business_id="biz_b")
    with pytest.raises(MarketStateError):
        chat.open_room(market["business_b"], created.id)
    assert chat.open_room(market["business_a"], created.id).id == kept.id


def test_messages_notify_the_counterpart(chat, store, sink, market, bidding):
    created, _, _ = bidding
    room = chat.open_room(market["customer"], created.id, business_id="biz_a")
    sink.deliveries.clear()

    sent = chat.send_message(market["customer"], room.id, "  Can you trim nails too?  ")
    reply = chat.send_message(market["business_a"], room.id, "Yes, included.")

    assert sent.content == "Can you trim nails too?"
    assert sink.recipients() == ["biz_a", "cust"]
    assert {row["category"] for row in sink.deliveries} == {"chat"}
    assert sink.deliveries[0]["link"] == f"chat:{room.id}"
    assert sink.deliveries[0]["title"] == "Message from Cust"
    with store.transaction() as session:
        assert session.chat_rooms.get(room.id).last_activity_at == reply.created_at

    with pytest.raises(MarketValidationError):
        chat.send_message(market["customer"], room.id, "   ")
    with pytest.raises(MarketPermissionError):
        chat.send_message(market["business_b"], room.id, "Hello?")


def test_unread_counts_and_mark_read(chat, market, bidding):
    created, _, _ = bidding
    room = chat.open_room(market["customer"], created.id, business_id="biz_a")
    first = chat.send_message(market["customer"], room.id, "One")
    chat.send_message(market["customer"], room.id, "Two")
    chat.send_message(market["business_a"], room.id, "Reply")

    [summary] = chat.list_rooms(market["business_a"])
    assert summary.unread_count == 2
    assert summary.last_message == "Reply"
    assert summary.counterpart_id == "cust"
    assert chat.list_rooms(market["customer"])[0].unread_count == 1

    assert chat.mark_read(market["business_a"], room.id, [first.id]) == 1
    assert chat.list_rooms(market["business_a"])[0].unread_count == 1
    assert chat.mark_read(market["business_a"], room.id) == 1
    assert chat.mark_read(market["business_a"], room.id) == 0
    assert chat.list_rooms(market["customer"])[0].unread_count == 1
    with pytest.raises(MarketPermissionError):
        chat.mark_read(market["business_b"], room.id)


def test_rooms_are_listed_by_latest_activity(chat, market, bidding):
    created, _, _ = bidding
    room_a = chat.open_room(market["customer"], created.id, business_id="biz_a")
    room_b = chat.open_room(market["customer"], created.id, business_id="biz_b")
    chat.send_message(market["business_a"], room_a.id, "Still available tomorrow")

    assert [s.room.id for s in chat.list_rooms(market["customer"])] == [room_a.id, room_b.id]
    assert [s.room.id for s in chat.list_rooms(market["business_b"])] == [room_b.id]
    with pytest.raises(MarketPermissionError):
        chat.get_room(market["business_b"], room_a.id)
