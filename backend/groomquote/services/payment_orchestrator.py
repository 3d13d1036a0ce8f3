import json
import logging
import secrets
from typing import Dict, List, Optional

from groomquote.config import settings
from groomquote.errors import (
    MarketConflictError,
    MarketError,
    MarketNotFoundError,
    MarketPermissionError,
    MarketStateError,
    MarketValidationError,
    PaymentAmountMismatchError,
    PaymentGatewayError,
)
from groomquote.models import (
    SERVICE_TYPE_LABELS,
    Actor,
    Payment,
    PaymentCallback,
    PaymentPreparation,
    QuoteRequest,
    QuoteResponse,
)
from groomquote.services import notification_fanout as fanout
from groomquote.services.market_store import MarketStore, market_store, new_id, utc_now_iso
from groomquote.services.notification_fanout import NotificationIntent, NotificationSink
from groomquote.services.notification_store import notification_store
from groomquote.services.payment_gateway import GatewayHandle, PaymentGateway, VirtualPaymentGateway
from groomquote.services.quote_lifecycle import QuoteLifecycle, quote_lifecycle

logger = logging.getLogger(__name__)


def _log_payment_event(event: str, payment: Payment, **extra: object) -> None:
    payload = {
        "amount": payment.amount,
        "event": event,
        "order_id": payment.order_id,
        "payment_id": payment.id,
        "status": payment.status,
        **extra,
    }
    logger.info("payment_event=%s", json.dumps(payload, sort_keys=True, default=str))


def _assert_acceptable(request: QuoteRequest, offer: QuoteResponse) -> None:
    if offer.status == "REJECTED":
        raise MarketStateError("Offer was rejected and can no longer be paid")
    if request.status in {"CANCELLED", "COMPLETED"}:
        raise MarketStateError(f"Quote request is {request.status.lower()}")


def _assert_reusable(existing: Payment) -> None:
    """Only rows that hold no live or historical charge may be re-prepared."""
    if existing.status == "DONE":
        raise MarketConflictError("Offer has already been paid")
    if existing.status == "IN_PROGRESS":
        raise MarketConflictError("A payment for this offer is already being confirmed")
    if existing.status == "CANCELED":
        raise MarketStateError("Payment for this offer was cancelled and refunded")
    if existing.refund_required:
        raise MarketStateError("Payment for this offer is awaiting a manual refund")


class PaymentOrchestrator:
    def __init__(
        self,
        store: MarketStore,
        gateway: PaymentGateway,
        lifecycle: QuoteLifecycle,
        sink: Optional[NotificationSink] = None,
        order_id_prefix: str = settings.order_id_prefix,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.sink = sink
        self.order_id_prefix = order_id_prefix

    def _new_order_id(self) -> str:
        return f"{self.order_id_prefix}{secrets.token_hex(16)}"

    def _update_payment(self, payment_id: str, order_id: str, **changes: object) -> Optional[Payment]:
        """Apply ``changes`` only while the row still belongs to ``order_id``."""
        with self.store.transaction() as session:
            payment = session.payments.find(payment_id)
            if payment is None or payment.order_id != order_id:
                return None
            updated = payment.model_copy(update={**changes, "updated_at": utc_now_iso()})
            return session.payments.save(updated)

    def prepare_payment(self, actor: Actor, offer_id: str, method: str = "CARD") -> PaymentPreparation:
        order_id = self._new_order_id()
        with self.store.transaction() as session:
            offer = session.responses.get(offer_id)
            request = session.requests.get(offer.quote_request_id)
            if request.customer_id != actor.user_id:
                raise MarketPermissionError("Only the requesting customer can pay for this offer")
            _assert_acceptable(request, offer)
            existing = session.payments.first(quote_response_id=offer.id)
            if existing is not None:
                _assert_reusable(existing)

            now_iso = utc_now_iso()
            payment = Payment(
                id=existing.id if existing else new_id("pay"),
                customer_id=request.customer_id,
                business_id=offer.business_id,
                quote_response_id=offer.id,
                amount=offer.price,
                method=method,  # type: ignore[arg-type]
                status="PENDING",
                order_id=order_id,
                created_at=existing.created_at if existing else now_iso,
                updated_at=now_iso,
            )
            session.payments.save(payment)
            metadata: Dict[str, str] = {
                "order_name": f"{SERVICE_TYPE_LABELS.get(request.service_type, request.service_type)} service",
                "customer_id": request.customer_id,
                "offer_id": offer.id,
                "method": method,
            }

        try:
            handle: GatewayHandle = self.gateway.prepare(order_id, payment.amount, metadata)
        except Exception as exc:
            self._update_payment(payment.id, order_id, status="FAILED")
            logger.warning("Gateway prepare failed for %s: %s", order_id, exc)
            if isinstance(exc, PaymentGatewayError):
                raise
            raise PaymentGatewayError("Payment provider could not prepare the payment") from exc

        ready = self._update_payment(payment.id, order_id, status="READY", payment_key=handle.payment_key)
        if ready is None:
            raise MarketConflictError("Payment was re-prepared concurrently")
        _log_payment_event("prepared", ready)
        return PaymentPreparation(
            payment_id=ready.id,
            order_id=ready.order_id,
            amount=ready.amount,
            gateway_handle=handle.as_dict(),
        )

    def confirm_payment(self, callback: PaymentCallback) -> Payment:
        with self.store.transaction() as session:
            payment = session.payments.first(order_id=callback.order_id)
            if payment is None:
                raise MarketNotFoundError("Payment not found")
            if callback.amount != payment.amount:
                raise PaymentAmountMismatchError(expected=payment.amount, actual=callback.amount)
            if payment.status == "DONE":
                _log_payment_event("confirm_replayed", payment)
                return payment
            if payment.status == "IN_PROGRESS":
                raise MarketConflictError("Payment confirmation already in progress")
            if payment.status != "READY":
                raise MarketStateError(f"Payment cannot be confirmed while {payment.status}")
            payment_key = callback.payment_key or payment.payment_key
            if not payment_key:
                raise MarketValidationError("Payment key is required")
            offer = session.responses.get(payment.quote_response_id)
            request = session.requests.get(offer.quote_request_id)
            _assert_acceptable(request, offer)

            payment = session.payments.save(
                payment.model_copy(update={"status": "IN_PROGRESS", "payment_key": payment_key, "updated_at": utc_now_iso()})
            )

        try:
            receipt = self.gateway.confirm(payment_key, payment.order_id, payment.amount)
        except Exception as exc:
            self._update_payment(payment.id, payment.order_id, status="READY")
            logger.warning("Gateway confirm failed for %s: %s", payment.order_id, exc)
            if isinstance(exc, MarketError):
                raise
            raise PaymentGatewayError("Payment provider could not confirm the payment") from exc

        if receipt.approved_amount != payment.amount:
            self._compensate(payment, payment_key, "Approved amount differs from order amount")
            raise PaymentAmountMismatchError(expected=payment.amount, actual=receipt.approved_amount)

        intents: List[NotificationIntent] = []
        try:
            with self.store.transaction() as session:
                offer = session.responses.get(payment.quote_response_id)
                request = session.requests.get(offer.quote_request_id)
                _assert_acceptable(request, offer)
                now_iso = utc_now_iso()
                payment = session.payments.save(
                    payment.model_copy(
                        update={
                            "status": "DONE",
                            "paid_at": now_iso,
                            "receipt_url": receipt.receipt_url,
                            "updated_at": now_iso,
                        }
                    )
                )
                offer.payment_status = "PAID"
                offer.updated_at = now_iso
                if offer.status == "ACCEPTED":
                    session.responses.save(offer)
                else:
                    previous_status = request.status
                    request, offer = self.lifecycle.apply_acceptance(session, request, offer)
                    customer = session.users.get(request.customer_id)
                    intents.extend(fanout.offer_accepted(request, offer, customer))
                    logger.info("Payment %s accepted offer %s (%s -> ACCEPTED)", payment.id, offer.id, previous_status)
        except Exception:
            logger.exception("Accepting offer failed after gateway approval for %s", payment.order_id)
            self._compensate(payment, payment_key, "Offer acceptance failed")
            raise

        _log_payment_event("confirmed", payment)
        intents.extend(fanout.payment_confirmed(payment))
        fanout.dispatch(self.sink, intents)
        return payment

    def _compensate(self, payment: Payment, payment_key: str, reason: str) -> None:
        """Undo a gateway approval that could not be applied internally."""
        refund_required = False
        try:
            self.gateway.cancel(payment_key, payment.amount, reason)
        except Exception:
            refund_required = True
            logger.exception("Compensating cancel failed for %s; manual refund required", payment.order_id)
        failed = self._update_payment(
            payment.id,
            payment.order_id,
            status="FAILED",
            payment_key=payment_key,
            refund_required=refund_required,
        )
        if failed is not None:
            _log_payment_event("compensated", failed, reason=reason, refund_required=refund_required)

    def cancel_payment(self, actor: Actor, payment_id: str, reason: str = "") -> Payment:
        with self.store.transaction() as session:
            payment = session.payments.get(payment_id)
            if actor.role != "ADMIN" and actor.user_id not in {payment.customer_id, payment.business_id}:
                raise MarketPermissionError("Not allowed to cancel this payment")
            if payment.status != "DONE":
                raise MarketStateError("Only completed payments can be cancelled")
            if not payment.payment_key:
                raise MarketStateError("Payment has no gateway transaction key")

        try:
            self.gateway.cancel(payment.payment_key, payment.amount, reason)
        except Exception as exc:
            logger.warning("Gateway cancel failed for %s: %s", payment.order_id, exc)
            if isinstance(exc, PaymentGatewayError):
                raise
            raise PaymentGatewayError("Payment provider could not cancel the payment") from exc

        with self.store.transaction() as session:
            payment = session.payments.get(payment_id)
            if payment.status != "DONE":
                raise MarketConflictError("Payment was cancelled concurrently")
            now_iso = utc_now_iso()
            payment = session.payments.save(
                payment.model_copy(update={"status": "CANCELED", "cancel_reason": reason.strip(), "updated_at": now_iso})
            )
            offer = session.responses.get(payment.quote_response_id)
            offer.payment_status = "REFUNDED"
            offer.updated_at = now_iso
            session.responses.save(offer)

        _log_payment_event("cancelled", payment, reason=reason)
        return payment

    def get_payment(self, actor: Actor, payment_id: str) -> Payment:
        with self.store.transaction() as session:
            payment = session.payments.get(payment_id)
        if actor.role != "ADMIN" and actor.user_id not in {payment.customer_id, payment.business_id}:
            raise MarketPermissionError("Not allowed to view this payment")
        return payment

    def payment_for_offer(self, actor: Actor, offer_id: str) -> Payment:
        with self.store.transaction() as session:
            payment = session.payments.first(quote_response_id=offer_id)
        if payment is None:
            raise MarketNotFoundError("Payment not found")
        return self.get_payment(actor, payment.id)

    def list_payments(self, actor: Actor) -> List[Payment]:
        order_by = "created_at DESC, rowid DESC"
        with self.store.transaction() as session:
            if actor.role == "ADMIN":
                return session.payments.query(order_by=order_by)
            if actor.role == "BUSINESS":
                return session.payments.query(order_by=order_by, business_id=actor.user_id)
            return session.payments.query(order_by=order_by, customer_id=actor.user_id)


payment_orchestrator = PaymentOrchestrator(
    store=market_store,
    gateway=VirtualPaymentGateway(),
    lifecycle=quote_lifecycle,
    sink=notification_store,
)
