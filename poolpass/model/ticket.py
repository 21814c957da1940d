from __future__ import annotations
from dataclasses import dataclass, replace, asdict
from typing import Any, Dict, FrozenSet, Iterable, Optional

from ..helpers import to_iso

PENDING = "pending"
PROCESSING = "processing"
SUCCESSFUL = "successful"
FAILED = "failed"

STATUSES = (PENDING, PROCESSING, SUCCESSFUL, FAILED)
TERMINAL = frozenset({SUCCESSFUL, FAILED})

# forward-only: pending -> processing -> successful, pending|processing ->
# failed. A claim may jump pending straight to a terminal status.
TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PROCESSING, SUCCESSFUL, FAILED}),
    PROCESSING: frozenset({SUCCESSFUL, FAILED}),
    SUCCESSFUL: frozenset(),
    FAILED: frozenset(),
}


def sources_for(to: str) -> FrozenSet[str]:
    """Statuses from which ``to`` can be reached (or kept, idempotently)."""
    return frozenset(
        s for s, targets in TRANSITIONS.items() if to in targets
    ) | {to}


def check_statuses(statuses: Iterable[str]) -> None:
    for s in statuses:
        if s not in STATUSES:
            raise ValueError(f"unknown payment status: {s!r}")


@dataclass(frozen=True)
class Ticket:
    id: str
    ticket_id: str
    name: str
    email: str
    gender: str
    amount: int
    payment_status: str
    created_at: float
    provider_ref: Optional[str] = None

    def with_status(self, status: str,
                    provider_ref: Optional[str] = None) -> Ticket:
        # provider ref is only ever filled in, never overwritten
        return replace(
            self,
            payment_status=status,
            provider_ref=self.provider_ref or provider_ref or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Public JSON shape (camelCase, ISO timestamps)."""
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "name": self.name,
            "email": self.email,
            "gender": self.gender,
            "amount": self.amount,
            "paymentStatus": self.payment_status,
            "providerRef": self.provider_ref,
            "createdAt": to_iso(self.created_at),
        }

    def to_record(self) -> Dict[str, Any]:
        """Storage shape (snake_case, epoch timestamps)."""
        return asdict(self)

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> Ticket:
        return cls(
            id=rec["id"],
            ticket_id=rec["ticket_id"],
            name=rec["name"],
            email=rec["email"],
            gender=rec["gender"],
            amount=int(rec["amount"]),
            payment_status=rec["payment_status"],
            created_at=float(rec["created_at"]),
            provider_ref=rec.get("provider_ref") or None,
        )
