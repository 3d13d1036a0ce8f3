import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4

from groomquote.errors import PaymentAmountMismatchError, PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass
class GatewayHandle:
    payment_key: Optional[str]
    checkout_url: str
    raw: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"payment_key": self.payment_key, "checkout_url": self.checkout_url, **self.raw}


@dataclass
class GatewayReceipt:
    payment_key: str
    approved_amount: int
    receipt_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    """Provider contract. Implementations raise PaymentGatewayError on any provider failure."""

    def prepare(self, order_id: str, amount: int, metadata: Dict[str, str]) -> GatewayHandle: ...

    def confirm(self, payment_key: str, order_id: str, amount: int) -> GatewayReceipt: ...

    def cancel(self, payment_key: str, amount: int, reason: str) -> None: ...


@dataclass
class _VirtualSession:
    order_id: str
    payment_key: str
    amount: int
    metadata: Dict[str, str]
    status: str = "READY"


class VirtualPaymentGateway:
    """In-process provider that approves everything it prepared.

    Used for local development and tests in place of a card processor; it still
    enforces the provider-side rules (known order, matching amount, no double
    cancel) so the orchestrator's failure paths stay exercised.
    """

    def __init__(self, checkout_base_url: str = "virtual://checkout") -> None:
        self._lock = Lock()
        self._checkout_base_url = checkout_base_url.rstrip("/")
        self._sessions: Dict[str, _VirtualSession] = {}
        self._orders_by_key: Dict[str, str] = {}

    def prepare(self, order_id: str, amount: int, metadata: Dict[str, str]) -> GatewayHandle:
        if amount <= 0:
            raise PaymentGatewayError("Amount must be positive")
        payment_key = f"VIRTUAL_{uuid4().hex}"
        with self._lock:
            if order_id in self._sessions:
                raise PaymentGatewayError("Order id already registered with the gateway")
            self._sessions[order_id] = _VirtualSession(
                order_id=order_id,
                payment_key=payment_key,
                amount=amount,
                metadata=dict(metadata),
            )
            self._orders_by_key[payment_key] = order_id
        return GatewayHandle(
            payment_key=payment_key,
            checkout_url=f"{self._checkout_base_url}/{order_id}",
            raw={"order_name": metadata.get("order_name", "")},
        )

    def confirm(self, payment_key: str, order_id: str, amount: int) -> GatewayReceipt:
        with self._lock:
            session = self._sessions.get(order_id)
            if session is None or session.payment_key != payment_key:
                raise PaymentGatewayError("Unknown payment session")
            if session.amount != amount:
                raise PaymentAmountMismatchError(expected=session.amount, actual=amount)
            if session.status not in {"READY", "DONE"}:
                raise PaymentGatewayError(f"Payment session is {session.status}")
            session.status = "DONE"
        return GatewayReceipt(
            payment_key=payment_key,
            approved_amount=amount,
            receipt_url=f"{self._checkout_base_url}/receipts/{order_id}",
        )

    def cancel(self, payment_key: str, amount: int, reason: str) -> None:
        with self._lock:
            order_id = self._orders_by_key.get(payment_key)
            session = self._sessions.get(order_id or "")
            if session is None:
                raise PaymentGatewayError("Unknown payment session")
            if session.status == "CANCELED":
                raise PaymentGatewayError("Payment already cancelled")
            if amount != session.amount:
                raise PaymentGatewayError("Full cancellation amount required")
            session.status = "CANCELED"
        logger.info("Virtual gateway cancelled %s: %s", order_id, reason or "no reason given")
