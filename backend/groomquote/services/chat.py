import logging
from typing import List, Optional, Sequence

from groomquote.errors import MarketPermissionError, MarketStateError, MarketValidationError
from groomquote.models import (
    Actor,
    ChatMessage,
    ChatRoom,
    ChatRoomDetails,
    ChatRoomSummary,
    QuoteRequest,
    QuoteResponse,
)
from groomquote.services import notification_fanout as fanout
from groomquote.services.market_store import MarketSession, MarketStore, market_store, new_id, utc_now_iso
from groomquote.services.notification_fanout import NotificationIntent, NotificationSink
from groomquote.services.notification_store import notification_store

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
OPENING_MESSAGE = "Chat opened. Ask anything about the grooming service."


def _participant_role(room: ChatRoom, user_id: str) -> str:
    return "CUSTOMER" if user_id == room.customer_id else "BUSINESS"


def _load_room(session: MarketSession, actor: Actor, room_id: str) -> ChatRoom:
    room = session.chat_rooms.get(room_id)
    if actor.user_id not in {room.customer_id, room.business_id}:
        raise MarketPermissionError("Not a participant in this chat room")
    return room


def _resolve_offer(session: MarketSession, actor: Actor, request: QuoteRequest, business_id: Optional[str]) -> QuoteResponse:
    if actor.role == "CUSTOMER":
        if request.customer_id != actor.user_id:
            raise MarketPermissionError("Only the requesting customer can open this chat")
        if not business_id:
            raise MarketValidationError("business_id is required to open a chat")
        offer = session.responses.first(quote_request_id=request.id, business_id=business_id)
        if offer is None:
            raise MarketStateError("This business has not offered a quote for the request")
        return offer
    if actor.role == "BUSINESS":
        offer = session.responses.first(quote_request_id=request.id, business_id=actor.user_id)
        if offer is None:
            raise MarketPermissionError("Only businesses that offered a quote can open this chat")
        return offer
    raise MarketPermissionError("Only quote participants can chat")


class ChatService:
    """One conversation per offer, between the requesting customer and the offering business."""

    def __init__(self, store: MarketStore, sink: Optional[NotificationSink] = None) -> None:
        self.store = store
        self.sink = sink

    def open_room(self, actor: Actor, request_id: str, business_id: Optional[str] = None) -> ChatRoom:
        with self.store.transaction() as session:
            request = session.requests.get(request_id)
            offer = _resolve_offer(session, actor, request, business_id)
            if fanout.counterpart(actor.role, request, offer) is None:
                raise MarketPermissionError("Only quote participants can chat")
            existing = session.chat_rooms.first(quote_response_id=offer.id)
            if existing is not None:
                return existing
            if request.status == "CANCELLED" or offer.status == "REJECTED":
                raise MarketStateError("Chat is closed for cancelled requests and rejected offers")

            now_iso = utc_now_iso()
            room = session.chat_rooms.save(
                ChatRoom(
                    id=new_id("chat"),
                    quote_request_id=request.id,
                    quote_response_id=offer.id,
                    customer_id=request.customer_id,
                    business_id=offer.business_id,
                    last_activity_at=now_iso,
                    created_at=now_iso,
                )
            )
            session.chat_messages.save(
                ChatMessage(
                    id=new_id("msg"),
                    room_id=room.id,
                    sender_id=actor.user_id,
                    content=OPENING_MESSAGE,
                    read=True,
                    system=True,
                    created_at=now_iso,
                )
            )
        logger.info("Chat room %s opened for offer %s by %s", room.id, offer.id, actor.user_id)
        return room

    def send_message(self, actor: Actor, room_id: str, content: str) -> ChatMessage:
        text = content.strip()
        if not text:
            raise MarketValidationError("Message content is required")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise MarketValidationError(f"Messages are limited to {MAX_MESSAGE_LENGTH} characters")

        intents: List[NotificationIntent] = []
        with self.store.transaction() as session:
            room = _load_room(session, actor, room_id)
            now_iso = utc_now_iso()
            message = session.chat_messages.save(
                ChatMessage(id=new_id("msg"), room_id=room.id, sender_id=actor.user_id, content=text, created_at=now_iso)
            )
            session.chat_rooms.save(room.model_copy(update={"last_activity_at": now_iso}))
            offer = session.responses.get(room.quote_response_id)
            request = session.requests.get(room.quote_request_id)
            recipient_id = fanout.counterpart(_participant_role(room, actor.user_id), request, offer)
            if recipient_id:
                sender = session.users.get(actor.user_id)
                intents.extend(fanout.chat_message_sent(message, sender, recipient_id))

        fanout.dispatch(self.sink, intents)
        return message

    def mark_read(self, actor: Actor, room_id: str, message_ids: Optional[Sequence[str]] = None) -> int:
        """Mark the other participant's messages read; returns how many changed."""
        with self.store.transaction() as session:
            room = _load_room(session, actor, room_id)
            unread = [
                message
                for message in session.chat_messages.query(room_id=room.id, read=0)
                if message.sender_id != actor.user_id
            ]
            if message_ids is not None:
                wanted = set(message_ids)
                unread = [message for message in unread if message.id in wanted]
            for message in unread:
                session.chat_messages.save(message.model_copy(update={"read": True}))
        return len(unread)

    def get_room(self, actor: Actor, room_id: str) -> ChatRoomDetails:
        with self.store.transaction() as session:
            room = _load_room(session, actor, room_id)
            other_id = room.business_id if actor.user_id == room.customer_id else room.customer_id
            other = session.users.get(other_id)
            messages = session.chat_messages.query(room_id=room.id)
        return ChatRoomDetails(
            room=room,
            counterpart_id=other.id,
            counterpart_name=other.display_name,
            messages=messages,
        )

    def list_rooms(self, actor: Actor) -> List[ChatRoomSummary]:
        summaries: List[ChatRoomSummary] = []
        with self.store.transaction() as session:
            rooms = session.chat_rooms.query(customer_id=actor.user_id) + session.chat_rooms.query(
                business_id=actor.user_id
            )
            for room in rooms:
                other_id = room.business_id if actor.user_id == room.customer_id else room.customer_id
                other = session.users.get(other_id)
                messages = session.chat_messages.query(room_id=room.id)
                summaries.append(
                    ChatRoomSummary(
                        room=room,
                        counterpart_id=other.id,
                        counterpart_name=other.display_name,
                        last_message=messages[-1].content if messages else None,
                        unread_count=sum(1 for m in messages if not m.read and m.sender_id != actor.user_id),
                    )
                )
        summaries.sort(key=lambda summary: summary.room.last_activity_at, reverse=True)
        return summaries


chat_service = ChatService(store=market_store, sink=notification_store)
