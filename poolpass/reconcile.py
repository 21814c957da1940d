"""Payment reconciliation: webhook pushes and verify-now pulls.

Both entry points converge on ``_fulfil``, which claims the ticket with the
store's atomic ``pending -> processing`` transition. Only the claim winner
renders the PDF and completes the ticket; every other caller (redelivered
webhook, concurrent verify-now) observes the state the winner produced.
"""
from __future__ import annotations
import base64
import hashlib
import hmac
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .artifacts import ArtifactStore
from .errors import (
    ArtifactGenerationError, AuthenticationError, CorroborationMismatch,
    NotFoundError, ValidationError,
)
from .gateway import PaymentGateway
from .helpers import ct_equal
from .model.ticket import (
    Ticket, PENDING, PROCESSING, SUCCESSFUL, FAILED, TERMINAL,
)
from .model.ticketstore import TicketStore
from .notify import Notifier

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "flutterwave-signature"
LEGACY_HASH_HEADER = "verif-hash"
CHARGE_COMPLETED = "charge.completed"

# _fulfil outcomes
FULFILLED = "fulfilled"
DUPLICATE = "duplicate"
ARTIFACT_FAILED = "artifact_failed"


def sign(secret: str, body: bytes) -> str:
    mac = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


def verify_signature(secret: str, body: bytes,
                     headers: Mapping[str, str]) -> str:
    """Authenticate a webhook body; returns the method that matched.

    HMAC-SHA256 over the raw body is preferred; the static ``verif-hash``
    token is accepted when that is the only header sent.
    """
    h = {k.lower(): v for k, v in headers.items()}
    sig = h.get(SIGNATURE_HEADER)
    if sig:
        if not ct_equal(sign(secret, body), sig):
            raise AuthenticationError("Unauthorized - invalid signature")
        return "hmac"
    legacy = h.get(LEGACY_HASH_HEADER)
    if legacy:
        if not ct_equal(secret, legacy):
            raise AuthenticationError("Unauthorized - invalid hash")
        return "verif-hash"
    raise AuthenticationError("Unauthorized - no signature")


def amount_matches(received: Any, expected: int) -> bool:
    if isinstance(received, bool) or not isinstance(received, (int, float)):
        return False
    return received == expected


@dataclass
class WebhookOutcome:
    status: str  # success | received | rejected
    message: str
    ticket: Optional[Ticket] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"status": self.status, "message": self.message}
        if self.ticket is not None:
            out["ticket"] = self.ticket.to_dict()
        return out


class ReconciliationEngine:
    def __init__(self, *, store: TicketStore, gateway: PaymentGateway,
                 artifacts: ArtifactStore, notifier: Notifier,
                 webhook_secret: str, currency: str = "NGN",
                 settle_timeout: float = 5.0,
                 settle_interval: float = 0.05) -> None:
        self.store = store
        self.gateway = gateway
        self.artifacts = artifacts
        self.notifier = notifier
        self.webhook_secret = webhook_secret
        self.currency = currency
        # how long verify-now waits on a ticket another caller has claimed
        self.settle_timeout = settle_timeout
        self.settle_interval = settle_interval

    # ----------------------------
    # shared
    # ----------------------------
    def _corroborate(self, ticket: Ticket, amount: Any,
                     currency: Any) -> Optional[str]:
        if currency != self.currency:
            logger.error(
                f"Invalid currency for {ticket.ticket_id}: {currency}, "
                f"expected {self.currency}"
            )
            return "Invalid currency"
        if not amount_matches(amount, ticket.amount):
            logger.error(
                f"Amount mismatch for {ticket.ticket_id}: received "
                f"{amount!r}, expected {ticket.amount}"
            )
            return "Amount mismatch"
        return None

    async def _settled(self, ticket: Ticket) -> Ticket:
        """Re-read a ticket someone else is fulfilling until it is terminal
        or ``settle_timeout`` runs out."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settle_timeout
        current = ticket
        while (current.payment_status not in TERMINAL
               and loop.time() < deadline):
            await asyncio.sleep(self.settle_interval)
            current = await self.store.get(ticket.id) or current
        return current

    async def _fulfil(self, ticket: Ticket, provider_ref: Optional[str],
                      wait: bool = False) -> Tuple[str, Ticket]:
        claimed = await self.store.claim_pending(
            ticket.id, provider_ref=provider_ref
        )
        if claimed is None:
            current = await self.store.get(ticket.id) or ticket
            if wait:
                current = await self._settled(current)
            logger.info(
                f"Ticket {ticket.ticket_id} already {current.payment_status}"
                f"; skipping duplicate confirmation"
            )
            return DUPLICATE, current

        logger.info(f"Processing successful payment for {ticket.ticket_id}")
        try:
            pdf = await self.artifacts.generate(claimed)
        except ArtifactGenerationError:
            failed = await self.store.update_status(claimed.id, FAILED)
            logger.error(
                f"Ticket {ticket.ticket_id} marked failed after PDF "
                f"generation error (provider ref {claimed.provider_ref})"
            )
            return ARTIFACT_FAILED, failed or claimed

        done = await self.store.transition(
            claimed.id, from_statuses=(PROCESSING,), to=SUCCESSFUL
        )
        if done is None:
            # a provider failure notice landed while we were rendering
            current = await self.store.get(claimed.id) or claimed
            logger.warning(
                f"Ticket {ticket.ticket_id} moved to "
                f"{current.payment_status} during fulfilment; not completing"
            )
            return DUPLICATE, current

        logger.info(
            f"Ticket {done.ticket_id} marked successful. PDF available at "
            f"/tickets/{done.ticket_id}.pdf"
        )
        await self.notifier.send_ticket(done, pdf)
        return FULFILLED, done

    # ----------------------------
    # push: provider webhook
    # ----------------------------
    async def handle_webhook(self, body: bytes,
                             headers: Mapping[str, str]) -> WebhookOutcome:
        method = verify_signature(self.webhook_secret, body, headers)
        logger.debug(f"Webhook verified using {method}")

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Invalid JSON")
        if (not isinstance(payload, dict) or not payload.get("event")
                or not isinstance(payload.get("data"), dict)):
            logger.error("Invalid webhook payload: missing event or data")
            raise ValidationError("Invalid payload structure")

        event = payload["event"]
        data = payload["data"]
        logger.info(
            f"Webhook received: event={event} status={data.get('status')} "
            f"tx_ref={data.get('tx_ref')} amount={data.get('amount')} "
            f"currency={data.get('currency')}"
        )
        if event != CHARGE_COMPLETED:
            logger.info(f"Unhandled webhook event: {event}")
            return WebhookOutcome("received", "Event not handled")

        tx_ref = data.get("tx_ref")
        if not tx_ref:
            logger.error("Missing tx_ref in webhook payload")
            raise ValidationError("Missing transaction reference")

        ticket = await self.store.get_by_ticket_id(str(tx_ref))
        if ticket is None:
            logger.error(f"Ticket not found for tx_ref: {tx_ref}")
            raise NotFoundError()

        customer = data.get("customer") or {}
        if isinstance(customer, dict) and customer.get("email") != ticket.email:
            logger.warning(
                f"Email mismatch for {tx_ref}: received "
                f"{customer.get('email')}, expected {ticket.email} - "
                f"using stored ticket email"
            )

        reason = self._corroborate(
            ticket, data.get("amount"), data.get("currency")
        )
        if reason is not None:
            return WebhookOutcome("rejected", reason, ticket)

        status = data.get("status")
        provider_ref = data.get("flw_ref") or data.get("providerRef")
        if status == "successful":
            outcome, current = await self._fulfil(ticket, provider_ref)
            if outcome == FULFILLED:
                return WebhookOutcome(
                    "success", "Payment processed and ticket generated",
                    current,
                )
            if outcome == ARTIFACT_FAILED:
                return WebhookOutcome(
                    "success",
                    "Payment processed but ticket generation failed",
                    current,
                )
            return WebhookOutcome(
                "received", "Already processed or processing", current
            )

        if status == "failed":
            failed = await self.store.transition(
                ticket.id, from_statuses=(PENDING, PROCESSING), to=FAILED,
                provider_ref=provider_ref,
            )
            if failed is not None:
                logger.info(f"Payment failed for ticket {tx_ref}")
                return WebhookOutcome("received", "Payment failed", failed)
            current = await self.store.get(ticket.id) or ticket
            logger.info(
                f"Ignoring failed notification for {tx_ref}: ticket is "
                f"{current.payment_status}"
            )
            return WebhookOutcome(
                "received", f"Ticket already {current.payment_status}",
                current,
            )

        logger.info(f"Payment status {status} for {tx_ref} - no action taken")
        return WebhookOutcome("received", f"Status {status} noted", ticket)

    # ----------------------------
    # pull: verify-now from the success page
    # ----------------------------
    async def verify_now(self, ticket_id: str,
                         transaction_id: Optional[str]) -> Ticket:
        ticket = await self.store.get_by_ticket_id(ticket_id)
        if ticket is None:
            raise NotFoundError()
        if ticket.payment_status == SUCCESSFUL:
            return ticket
        if not transaction_id:
            raise ValidationError("transaction_id query parameter required")

        info = await self.gateway.verify_transaction(transaction_id)
        if info.get("status") != "successful":
            logger.warning(
                f"Transaction {transaction_id} for {ticket_id} not "
                f"successful: {info.get('status')}"
            )
            raise CorroborationMismatch(
                "Transaction not successful", ticket=ticket
            )
        reason = self._corroborate(
            ticket, info.get("amount"), info.get("currency")
        )
        if reason is None and info.get("tx_ref") != ticket.ticket_id:
            logger.error(
                f"Transaction {transaction_id} belongs to "
                f"{info.get('tx_ref')}, not {ticket_id}"
            )
            reason = "Transaction reference mismatch"
        if reason is not None:
            raise CorroborationMismatch("Verification mismatch", ticket=ticket)

        _, current = await self._fulfil(
            ticket, info.get("provider_ref") or transaction_id, wait=True
        )
        return current
