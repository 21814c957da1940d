from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from ..ticket import Ticket, PENDING, PROCESSING, sources_for


class TicketStore(ABC):
    """Durable ticket records plus a compare-and-set status transition.

    Every backend must apply ``transition`` as one indivisible step: two
    callers racing on the same ticket can never both see their expected
    source status.
    """

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Insert; raises DuplicateTicketError on id/ticket_id collision."""

    @abstractmethod
    async def get(self, id: str) -> Optional[Ticket]: ...

    @abstractmethod
    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Ticket]: ...

    @abstractmethod
    async def get_by_provider_ref(self, ref: str) -> Optional[Ticket]: ...

    @abstractmethod
    async def transition(
        self, id: str, *, from_statuses: Iterable[str], to: str,
        provider_ref: Optional[str] = None,
    ) -> Optional[Ticket]:
        """Set status to ``to`` iff the current status is in
        ``from_statuses``. Returns the updated ticket, or None when the
        guard did not hold (or the ticket does not exist)."""

    @abstractmethod
    async def list_all(self) -> List[Ticket]:
        """All tickets, newest first."""

    async def claim_pending(
        self, id: str, *, to: str = PROCESSING,
        provider_ref: Optional[str] = None,
    ) -> Optional[Ticket]:
        return await self.transition(
            id, from_statuses=(PENDING,), to=to, provider_ref=provider_ref
        )

    async def update_status(
        self, id: str, status: str, provider_ref: Optional[str] = None
    ) -> Optional[Ticket]:
        # idempotent set; still refuses to move a ticket backwards
        return await self.transition(
            id, from_statuses=sources_for(status), to=status,
            provider_ref=provider_ref,
        )

    async def close(self) -> None:
        return None
