import asyncio
import json
import uuid
from typing import List, Optional, Tuple

from poolpass.artifacts import ArtifactStore
from poolpass.config import Settings
from poolpass.errors import ArtifactGenerationError
from poolpass.helpers import now_ts
from poolpass.model.ticket import Ticket, PENDING
from poolpass.notify import Notifier
from poolpass.reconcile import sign

SECRET = "whsec-test-secret"
TICKET_ID = "RSG-PPOOL-123456"


def make_settings(tmp_path, **kw) -> Settings:
    base = dict(
        webhook_secret=SECRET,
        gateway_public_key="FLWPUBK_TEST-public",
        gateway_secret_key="FLWSECK_TEST-secret",
        gateway_backend="mock",
        tickets_file=str(tmp_path / "tickets.json"),
        artifacts_dir=str(tmp_path / "tickets"),
    )
    base.update(kw)
    return Settings(**base)


def make_ticket(ticket_id: str = TICKET_ID, amount: int = 3000,
                status: str = PENDING, **kw) -> Ticket:
    fields = dict(
        id=uuid.uuid4().hex,
        ticket_id=ticket_id,
        name="Ada Lovelace",
        email="ada@example.com",
        gender="female",
        amount=amount,
        payment_status=status,
        created_at=now_ts(),
    )
    fields.update(kw)
    return Ticket(**fields)


def webhook(ticket_id: str = TICKET_ID, *, status: str = "successful",
            amount=3000, currency: str = "NGN", flw_ref: str = "X1",
            event: str = "charge.completed",
            email: str = "ada@example.com") -> Tuple[bytes, dict]:
    body = json.dumps({
        "event": event,
        "data": {
            "status": status,
            "tx_ref": ticket_id,
            "amount": amount,
            "currency": currency,
            "flw_ref": flw_ref,
            "customer": {"email": email, "name": "Ada Lovelace"},
        },
    }).encode()
    return body, {
        "flutterwave-signature": sign(SECRET, body),
        "content-type": "application/json",
    }


class CountingArtifacts(ArtifactStore):
    """Real artifact store that counts renders and can stall or fail."""

    def __init__(self, directory, event, *, delay: float = 0.0,
                 fail: bool = False) -> None:
        super().__init__(directory, event)
        self.delay = delay
        self.fail = fail
        self.calls: List[str] = []

    async def generate(self, ticket: Ticket) -> bytes:
        self.calls.append(ticket.ticket_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ArtifactGenerationError("renderer exploded")
        return await super().generate(ticket)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.sent: List[Tuple[str, int]] = []

    async def send_ticket(self, ticket: Ticket, pdf: bytes) -> bool:
        self.sent.append((ticket.ticket_id, len(pdf)))
        return True


def find(tickets: List[Ticket], ticket_id: str) -> Optional[Ticket]:
    for t in tickets:
        if t.ticket_id == ticket_id:
            return t
    return None
