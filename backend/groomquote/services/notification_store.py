from collections import defaultdict
from threading import Lock
from typing import Dict, List, Optional, Protocol, Sequence, Set

from groomquote.models import NotificationRecord
from groomquote.services.market_store import new_id, utc_now_iso
from groomquote.services.push_sender import PushResult, push_sender

INBOX_LIMIT = 100


class PushDelivery(Protocol):
    def send(self, tokens: Sequence[str], title: str, body: str, data: Dict[str, str]) -> PushResult: ...


def _push_data(record: NotificationRecord) -> Dict[str, str]:
    """Payload the apps route on: ``quote:qr_1`` becomes kind ``quote`` and target ``qr_1``."""
    kind, _, target_id = (record.deep_link or "").partition(":")
    return {
        "notification_id": record.id,
        "category": record.category,
        "deep_link": record.deep_link or "",
        "kind": kind if target_id else "",
        "target_id": target_id,
    }


class NotificationStore:
    """Per-user in-app inbox with push delivery; the sink lifecycle services fan out to."""

    def __init__(self, sender: Optional[PushDelivery] = None, inbox_limit: int = INBOX_LIMIT) -> None:
        self._lock = Lock()
        self._sender = sender or push_sender
        self._inbox_limit = inbox_limit
        self._inboxes: Dict[str, List[NotificationRecord]] = defaultdict(list)
        self._device_tokens: Dict[str, Set[str]] = defaultdict(set)

    def register_device_token(self, user_id: str, device_token: str) -> bool:
        token = device_token.strip()
        if not token:
            return False
        with self._lock:
            self._device_tokens[user_id].add(token)
        return True

    def deliver(
        self,
        recipient_id: str,
        title: str,
        body: str,
        link: Optional[str] = None,
        category: str = "system",
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=new_id("ntf"),
            user_id=recipient_id,
            title=title,
            body=body,
            category=category,  # type: ignore[arg-type]
            created_at=utc_now_iso(),
            deep_link=link,
        )
        with self._lock:
            inbox = self._inboxes[recipient_id]
            inbox.insert(0, record)
            del inbox[self._inbox_limit :]
            tokens = sorted(self._device_tokens.get(recipient_id, ()))

        if tokens:
            result = self._sender.send(tokens, title, body, _push_data(record))
            if result.dead_tokens:
                with self._lock:
                    self._device_tokens[recipient_id].difference_update(result.dead_tokens)
        return record

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        with self._lock:
            rows = list(self._inboxes.get(user_id, ()))
        if unread_only:
            rows = [row for row in rows if not row.read]
        return rows

    def unread_count(self, user_id: str) -> int:
        with self._lock:
            return sum(1 for row in self._inboxes.get(user_id, ()) if not row.read)

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            inbox = self._inboxes.get(user_id, [])
            for idx, row in enumerate(inbox):
                if row.id == notification_id:
                    inbox[idx] = row.model_copy(update={"read": True})
                    return inbox[idx]
        return None

    def mark_all_read(self, user_id: str) -> int:
        with self._lock:
            inbox = self._inboxes.get(user_id, [])
            unread = [idx for idx, row in enumerate(inbox) if not row.read]
            for idx in unread:
                inbox[idx] = inbox[idx].model_copy(update={"read": True})
        return len(unread)


notification_store = NotificationStore()
