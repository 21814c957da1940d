from __future__ import annotations
from typing import Callable, AsyncContextManager, Iterable, List, Optional

from sqlalchemy import text, bindparam
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from ...errors import DuplicateTicketError
from ..db import Base
from ..ticket import Ticket, check_statuses
from ._base import TicketStore

_COLUMNS = (
    "id, ticket_id, name, email, gender, amount, payment_status, "
    "provider_ref, created_at"
)


async def create_schema(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.create_all)


class SqlTicketStore(TicketStore):
    def __init__(
        self, *, sessionmaker: Callable[[], AsyncSession],
        gated: Callable[[], AsyncContextManager[None]],
    ) -> None:
        self.sessionmaker = sessionmaker
        self.gated = gated

    async def create(self, ticket: Ticket) -> Ticket:
        try:
            async with self.gated():
                async with self.sessionmaker() as db:
                    async with db.begin():
                        await db.execute(text(f"""
                          INSERT INTO tickets ({_COLUMNS})
                          VALUES (
                            :id, :ticket_id, :name, :email, :gender, :amount,
                            :payment_status, :provider_ref, :created_at
                          )
                        """), ticket.to_record())
        except IntegrityError:
            raise DuplicateTicketError(
                f"ticket {ticket.ticket_id} already exists"
            )
        return ticket

    async def _fetch_one(self, where: str, params: dict) -> Optional[Ticket]:
        async with self.gated():
            async with self.sessionmaker() as db:
                row = (await db.execute(
                    text(f"SELECT {_COLUMNS} FROM tickets WHERE {where}"),
                    params,
                )).mappings().first()
        return Ticket.from_record(dict(row)) if row else None

    async def get(self, id: str) -> Optional[Ticket]:
        return await self._fetch_one("id = :id", {"id": id})

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Ticket]:
        return await self._fetch_one(
            "ticket_id = :tid", {"tid": ticket_id}
        )

    async def get_by_provider_ref(self, ref: str) -> Optional[Ticket]:
        return await self._fetch_one("provider_ref = :ref", {"ref": ref})

    async def transition(
        self, id: str, *, from_statuses: Iterable[str], to: str,
        provider_ref: Optional[str] = None,
    ) -> Optional[Ticket]:
        allowed = tuple(from_statuses)
        check_statuses(allowed + (to,))
        # Row-level compare-and-set: the WHERE guard and the write are one
        # statement, so concurrent callers serialize on the row.
        stmt = text(f"""
            UPDATE tickets
            SET payment_status = :to,
                provider_ref = COALESCE(provider_ref, :ref)
            WHERE id = :id AND payment_status IN :allowed
            RETURNING {_COLUMNS}
        """).bindparams(bindparam("allowed", expanding=True))
        async with self.gated():
            async with self.sessionmaker() as db:
                async with db.begin():
                    row = (await db.execute(stmt, {
                        "to": to,
                        "ref": provider_ref,
                        "id": id,
                        "allowed": list(allowed),
                    })).mappings().first()
                    return Ticket.from_record(dict(row)) if row else None

    async def list_all(self) -> List[Ticket]:
        async with self.gated():
            async with self.sessionmaker() as db:
                rows = (await db.execute(text(f"""
                    SELECT {_COLUMNS} FROM tickets
                    ORDER BY created_at DESC
                """))).mappings().all()
        return [Ticket.from_record(dict(r)) for r in rows]
