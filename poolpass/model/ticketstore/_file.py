from __future__ import annotations
import asyncio
import json
import logging
import os
import tempfile
from typing import Dict, Iterable, List, Optional

from ...errors import DuplicateTicketError
from ..ticket import Ticket, check_statuses
from ._base import TicketStore

logger = logging.getLogger(__name__)


class FileTicketStore(TicketStore):
    """Tickets kept in one JSON document.

    The process is the single writer: every mutation runs under one
    asyncio.Lock as read-modify-write of the in-memory table, then the whole
    document is written to a temp file from a worker thread and swapped in
    with os.replace. The lock is held until the write lands.
    """

    def __init__(self, path: str) -> None:
        self.path = os.path.abspath(path)
        self._lock = asyncio.Lock()
        self._tickets: Dict[str, Ticket] = {}
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            self._flush()
            return
        with open(self.path, "r", encoding="utf-8") as f:
            raw = f.read()
        for rec in json.loads(raw or "[]"):
            t = Ticket.from_record(rec)
            self._tickets[t.id] = t
        logger.info(f"Loaded {len(self._tickets)} tickets from {self.path}")

    def _flush(self) -> None:
        records = [t.to_record() for t in self._tickets.values()]
        fd, tmp = tempfile.mkstemp(
            dir=os.path.dirname(self.path), prefix=".tickets-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    async def create(self, ticket: Ticket) -> Ticket:
        async with self._lock:
            if ticket.id in self._tickets or any(
                t.ticket_id == ticket.ticket_id
                for t in self._tickets.values()
            ):
                raise DuplicateTicketError(
                    f"ticket {ticket.ticket_id} already exists"
                )
            self._tickets[ticket.id] = ticket
            try:
                await asyncio.to_thread(self._flush)
            except OSError:
                del self._tickets[ticket.id]
                raise
            return ticket

    async def get(self, id: str) -> Optional[Ticket]:
        return self._tickets.get(id)

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Ticket]:
        for t in self._tickets.values():
            if t.ticket_id == ticket_id:
                return t
        return None

    async def get_by_provider_ref(self, ref: str) -> Optional[Ticket]:
        for t in self._tickets.values():
            if t.provider_ref == ref:
                return t
        return None

    async def transition(
        self, id: str, *, from_statuses: Iterable[str], to: str,
        provider_ref: Optional[str] = None,
    ) -> Optional[Ticket]:
        allowed = set(from_statuses)
        check_statuses(allowed | {to})
        async with self._lock:
            current = self._tickets.get(id)
            if current is None or current.payment_status not in allowed:
                return None
            updated = current.with_status(to, provider_ref)
            self._tickets[id] = updated
            try:
                await asyncio.to_thread(self._flush)
            except OSError:
                self._tickets[id] = current
                raise
            return updated

    async def list_all(self) -> List[Ticket]:
        return sorted(
            self._tickets.values(), key=lambda t: t.created_at, reverse=True
        )
