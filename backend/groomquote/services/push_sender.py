import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Sequence

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from groomquote.config import settings

logger = logging.getLogger(__name__)

APP_NAME = "groomquote"
# FCM rejects multicast messages addressed to more tokens than this.
MULTICAST_LIMIT = 500

_DEAD_TOKEN_ERRORS = (messaging.UnregisteredError, messaging.SenderIdMismatchError)


@dataclass
class PushResult:
    delivered: int = 0
    dead_tokens: List[str] = field(default_factory=list)


def _is_dead_token_error(error: Optional[Exception]) -> bool:
    if isinstance(error, _DEAD_TOKEN_ERRORS):
        return True
    # Malformed registration tokens come back as INVALID_ARGUMENT.
    return isinstance(error, exceptions.InvalidArgumentError) and "token" in str(error).lower()


class PushSender:
    """Firebase Cloud Messaging delivery to device tokens.

    Without a credentials path the sender stays disabled and every send is a
    no-op, which is how local runs and tests work.
    """

    def __init__(self, credentials_path: str = "") -> None:
        self._lock = Lock()
        self._credentials_path = credentials_path
        self._app: Optional[firebase_admin.App] = None
        self._resolved = False

    @property
    def enabled(self) -> bool:
        return self._resolve_app() is not None

    def _resolve_app(self) -> Optional[firebase_admin.App]:
        with self._lock:
            if self._resolved:
                return self._app
            self._resolved = True
            if not self._credentials_path:
                logger.info("Push delivery disabled: FIREBASE_CREDENTIALS_PATH not set")
                return None
            try:
                self._app = firebase_admin.get_app(APP_NAME)
            except ValueError:
                try:
                    cred = credentials.Certificate(self._credentials_path)
                    self._app = firebase_admin.initialize_app(cred, name=APP_NAME)
                except (OSError, ValueError):
                    logger.exception("Push delivery disabled: could not load Firebase credentials")
                    return None
            logger.info("Push delivery enabled via firebase app %s", APP_NAME)
            return self._app

    def send(self, tokens: Sequence[str], title: str, body: str, data: Dict[str, str]) -> PushResult:
        """Multicast one notification; reports which tokens FCM says are gone for good."""
        result = PushResult()
        app = self._resolve_app()
        if app is None or not tokens:
            return result

        unique = list(dict.fromkeys(tokens))
        for start in range(0, len(unique), MULTICAST_LIMIT):
            batch = unique[start : start + MULTICAST_LIMIT]
            message = messaging.MulticastMessage(
                tokens=batch,
                notification=messaging.Notification(title=title, body=body),
                data=data,
            )
            try:
                response = messaging.send_each_for_multicast(message, app=app)
            except exceptions.FirebaseError:
                logger.exception("Push batch to %d devices failed", len(batch))
                continue
            result.delivered += response.success_count
            for token, item in zip(batch, response.responses):
                if not item.success and _is_dead_token_error(item.exception):
                    result.dead_tokens.append(token)

        if result.dead_tokens:
            logger.warning("Push delivery found %d dead device tokens", len(result.dead_tokens))
        return result


push_sender = PushSender(credentials_path=settings.firebase_credentials_path)
