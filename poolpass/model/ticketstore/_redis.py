from __future__ import annotations
from typing import Dict, Iterable, List, Optional
import redis.asyncio as redis

from ...errors import DuplicateTicketError
from ..ticket import Ticket, check_statuses
from ._base import TicketStore


# ---- keys
def k_ticket(id: str) -> str: return f"ticket:{id}"
def k_ref(ticket_id: str) -> str: return f"ticketref:{ticket_id}"
def k_provider(ref: str) -> str: return f"providerref:{ref}"


CREATED_INDEX = "tickets:created"

# KEYS[1] ticketref, KEYS[2] ticket hash, KEYS[3] created index,
# KEYS[4] provider-ref index key ('' ref -> unused)
# ARGV[1] id, ARGV[2] created_at, ARGV[3] provider ref or '', ARGV[4..]
# hash field/value pairs
# returns 1 created, 0 ticket_id taken, -1 id taken
_CREATE_LUA = """
if redis.call('EXISTS', KEYS[1]) == 1 then return 0 end
if redis.call('EXISTS', KEYS[2]) == 1 then return -1 end
redis.call('SET', KEYS[1], ARGV[1])
redis.call('HSET', KEYS[2], unpack(ARGV, 4))
redis.call('ZADD', KEYS[3], ARGV[2], ARGV[1])
if ARGV[3] ~= '' then
  redis.call('SET', KEYS[4], ARGV[1])
end
return 1
"""

# KEYS[1] ticket hash, KEYS[2] provider-ref index key ('' ref -> unused)
# ARGV[1] target status, ARGV[2] provider ref or '', ARGV[3..] allowed
_TRANSITION_LUA = """
local cur = redis.call('HGET', KEYS[1], 'payment_status')
if not cur then return 0 end
local ok = false
for i = 3, #ARGV do
  if ARGV[i] == cur then ok = true end
end
if not ok then return 0 end
redis.call('HSET', KEYS[1], 'payment_status', ARGV[1])
if ARGV[2] ~= '' then
  local ref = redis.call('HGET', KEYS[1], 'provider_ref')
  if not ref or ref == '' then
    redis.call('HSET', KEYS[1], 'provider_ref', ARGV[2])
    redis.call('SET', KEYS[2], redis.call('HGET', KEYS[1], 'id'))
  end
end
return 1
"""


def _to_hash(ticket: Ticket) -> Dict[str, str]:
    # decode_responses=True: everything goes in and comes out as str
    return {
        "id": ticket.id,
        "ticket_id": ticket.ticket_id,
        "name": ticket.name,
        "email": ticket.email,
        "gender": ticket.gender,
        "amount": str(ticket.amount),
        "payment_status": ticket.payment_status,
        "provider_ref": ticket.provider_ref or "",
        "created_at": repr(ticket.created_at),
    }


class RedisTicketStore(TicketStore):
    def __init__(self, r: redis.Redis) -> None:
        self.r = r
        self._create = r.register_script(_CREATE_LUA)
        self._transition = r.register_script(_TRANSITION_LUA)

    async def create(self, ticket: Ticket) -> Ticket:
        fields: List[str] = []
        for k, v in _to_hash(ticket).items():
            fields += [k, v]
        ref = ticket.provider_ref or ""
        created = await self._create(
            keys=[
                k_ref(ticket.ticket_id),
                k_ticket(ticket.id),
                CREATED_INDEX,
                k_provider(ref) if ref else k_ticket(ticket.id),
            ],
            args=[ticket.id, repr(ticket.created_at), ref, *fields],
        )
        if created == 0:
            raise DuplicateTicketError(
                f"ticket {ticket.ticket_id} already exists"
            )
        if created < 0:
            raise DuplicateTicketError(f"ticket id {ticket.id} collides")
        return ticket

    async def get(self, id: str) -> Optional[Ticket]:
        h = await self.r.hgetall(k_ticket(id))
        return Ticket.from_record(h) if h else None

    async def _get_via(self, key: str) -> Optional[Ticket]:
        id = await self.r.get(key)
        if not id:
            return None
        return await self.get(id)

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Ticket]:
        return await self._get_via(k_ref(ticket_id))

    async def get_by_provider_ref(self, ref: str) -> Optional[Ticket]:
        return await self._get_via(k_provider(ref))

    async def transition(
        self, id: str, *, from_statuses: Iterable[str], to: str,
        provider_ref: Optional[str] = None,
    ) -> Optional[Ticket]:
        allowed = list(from_statuses)
        check_statuses(allowed + [to])
        ref = provider_ref or ""
        applied = await self._transition(
            keys=[k_ticket(id), k_provider(ref) if ref else k_ticket(id)],
            args=[to, ref, *allowed],
        )
        if not applied:
            return None
        return await self.get(id)

    async def list_all(self) -> List[Ticket]:
        ids = await self.r.zrevrange(CREATED_INDEX, 0, -1)
        pipe = self.r.pipeline()
        for id in ids:
            pipe.hgetall(k_ticket(id))
        rows = await pipe.execute()
        return [Ticket.from_record(h) for h in rows if h]
