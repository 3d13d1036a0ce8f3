from fastapi import APIRouter, Depends

from groomquote.auth import require_actor
from groomquote.errors import MarketError
from groomquote.models import (
    Actor,
    ChatMessage,
    ChatMessageCreate,
    ChatReadRequest,
    ChatRoom,
    ChatRoomDetails,
    ChatRoomOpenRequest,
    ChatRoomSummary,
)
from groomquote.routers.common import raise_market_http_error
from groomquote.services.chat import chat_service

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/rooms", response_model=ChatRoom)
def open_room(payload: ChatRoomOpenRequest, actor: Actor = Depends(require_actor)):
    try:
        return chat_service.open_room(actor, payload.quote_request_id, business_id=payload.business_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.get("/rooms", response_model=list[ChatRoomSummary])
def list_rooms(actor: Actor = Depends(require_actor)):
    return chat_service.list_rooms(actor)


@router.get("/rooms/{room_id}", response_model=ChatRoomDetails)
def get_room(room_id: str, actor: Actor = Depends(require_actor)):
    try:
        return chat_service.get_room(actor, room_id)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.post("/rooms/{room_id}/messages", response_model=ChatMessage, status_code=201)
def send_message(room_id: str, payload: ChatMessageCreate, actor: Actor = Depends(require_actor)):
    try:
        return chat_service.send_message(actor, room_id, payload.content)
    except MarketError as exc:
        raise_market_http_error(exc)


@router.post("/rooms/{room_id}/read", response_model=dict)
def mark_read(room_id: str, payload: ChatReadRequest, actor: Actor = Depends(require_actor)):
    try:
        return {"marked": chat_service.mark_read(actor, room_id, payload.message_ids)}
    except MarketError as exc:
        raise_market_http_error(exc)
