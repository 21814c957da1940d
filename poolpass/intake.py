from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

from .config import GENDERS, Settings
from .errors import DuplicateTicketError, ValidationError
from .gateway import PaymentGateway
from .helpers import is_valid_email, new_ticket_id, now_ts
from .model.ticket import Ticket, PENDING
from .model.ticketstore import TicketStore

logger = logging.getLogger(__name__)

TICKET_ID_ATTEMPTS = 5


@dataclass(frozen=True)
class Purchase:
    name: str
    email: str
    gender: str
    amount: int


def validate_purchase(payload: Any,
                      prices: Mapping[str, int]) -> Purchase:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid data", errors=[
            {"field": "body", "message": "Expected a JSON object"}
        ])
    errors: List[Dict[str, str]] = []

    name = payload.get("name")
    name = name.strip() if isinstance(name, str) else ""
    if len(name) < 2:
        errors.append({"field": "name",
                       "message": "Name must be at least 2 characters"})

    email = payload.get("email")
    email = email.strip() if isinstance(email, str) else ""
    if not is_valid_email(email):
        errors.append({"field": "email", "message": "Invalid email address"})

    gender = payload.get("gender")
    if gender not in GENDERS:
        errors.append({"field": "gender",
                       "message": "Please select a gender"})

    amount = payload.get("amount")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        errors.append({"field": "amount",
                       "message": "Amount must be a positive integer"})
    elif gender in prices and amount != prices[gender]:
        errors.append({"field": "amount",
                       "message": f"Amount must be {prices[gender]}"})

    if errors:
        raise ValidationError("Invalid data", errors=errors)
    return Purchase(name=name, email=email, gender=gender, amount=amount)


async def create_pending_ticket(store: TicketStore, purchase: Purchase,
                                prefix: str) -> Ticket:
    for _ in range(TICKET_ID_ATTEMPTS):
        ticket = Ticket(
            id=uuid.uuid4().hex,
            ticket_id=new_ticket_id(prefix),
            name=purchase.name,
            email=purchase.email,
            gender=purchase.gender,
            amount=purchase.amount,
            payment_status=PENDING,
            created_at=now_ts(),
        )
        try:
            return await store.create(ticket)
        except DuplicateTicketError:
            logger.warning(f"Ticket id {ticket.ticket_id} taken, retrying")
    raise DuplicateTicketError("could not allocate a unique ticket id")


async def initialize_payment(
    *, payload: Any, store: TicketStore, gateway: PaymentGateway,
    settings: Settings, redirect_url: str, logo_url: str = "",
) -> Dict[str, str]:
    purchase = validate_purchase(payload, settings.ticket_prices)
    ticket = await create_pending_ticket(
        store, purchase, settings.ticket_prefix
    )
    logger.info(f"Created pending ticket {ticket.ticket_id}")

    ev = settings.event
    customizations = {
        "title": f"{ev.organizer.title()} - {ev.title}",
        "description": f"Ticket for {ticket.name}",
    }
    if logo_url:
        customizations["logo"] = logo_url
    session = await gateway.initialize_charge(
        tx_ref=ticket.ticket_id,
        amount=ticket.amount,
        currency=settings.currency,
        redirect_url=redirect_url,
        customer={"email": ticket.email, "name": ticket.name},
        meta={"ticket_id": ticket.ticket_id, "gender": ticket.gender},
        customizations=customizations,
    )
    return {"paymentLink": session["payment_link"],
            "ticketId": ticket.ticket_id}
