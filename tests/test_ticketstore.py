import asyncio
import threading

import pytest

from poolpass.errors import DuplicateTicketError
from poolpass.model.ticket import PENDING, PROCESSING, SUCCESSFUL, FAILED
from poolpass.model.ticketstore import FileTicketStore, new_store

from tests.support import make_ticket


async def test_create_and_lookups(store):
    t = await store.create(make_ticket())
    assert await store.get(t.id) == t
    assert await store.get_by_ticket_id(t.ticket_id) == t
    assert await store.get(t.id + "x") is None
    assert await store.get_by_ticket_id("RSG-PPOOL-000000") is None


async def test_duplicate_ticket_id_rejected(store):
    await store.create(make_ticket())
    with pytest.raises(DuplicateTicketError):
        await store.create(make_ticket())


async def test_list_all_newest_first(store):
    a = await store.create(make_ticket("RSG-PPOOL-111111", created_at=100.0))
    b = await store.create(make_ticket("RSG-PPOOL-222222", created_at=200.0))
    assert [t.id for t in await store.list_all()] == [b.id, a.id]


async def test_claim_only_once(store):
    t = await store.create(make_ticket())
    first = await store.claim_pending(t.id, provider_ref="FLW-1")
    assert first.payment_status == PROCESSING
    assert first.provider_ref == "FLW-1"
    assert await store.claim_pending(t.id, provider_ref="FLW-2") is None
    assert (await store.get(t.id)).provider_ref == "FLW-1"


async def test_concurrent_claims_have_one_winner(store):
    t = await store.create(make_ticket())
    results = await asyncio.gather(
        *(store.claim_pending(t.id, provider_ref=f"R{i}") for i in range(10))
    )
    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert (await store.get(t.id)).payment_status == PROCESSING


async def test_claim_unknown_ticket(store):
    assert await store.claim_pending("nope") is None


async def test_provider_ref_lookup_and_not_overwritten(store):
    t = await store.create(make_ticket())
    await store.claim_pending(t.id, provider_ref="FLW-1")
    done = await store.transition(
        t.id, from_statuses=(PROCESSING,), to=SUCCESSFUL,
        provider_ref="FLW-OTHER",
    )
    assert done.payment_status == SUCCESSFUL
    assert done.provider_ref == "FLW-1"
    found = await store.get_by_provider_ref("FLW-1")
    assert found is not None and found.id == t.id
    assert await store.get_by_provider_ref("FLW-OTHER") is None


async def test_update_status_never_moves_backwards(store):
    t = await store.create(make_ticket())
    assert (await store.update_status(t.id, SUCCESSFUL)).payment_status \
        == SUCCESSFUL
    # idempotent re-set is fine
    assert (await store.update_status(t.id, SUCCESSFUL)).payment_status \
        == SUCCESSFUL
    assert await store.update_status(t.id, FAILED) is None
    assert await store.update_status(t.id, PENDING) is None
    assert (await store.get(t.id)).payment_status == SUCCESSFUL


async def test_failed_is_terminal(store):
    t = await store.create(make_ticket())
    await store.update_status(t.id, FAILED)
    assert await store.claim_pending(t.id) is None
    assert await store.update_status(t.id, PROCESSING) is None
    assert (await store.get(t.id)).payment_status == FAILED


async def test_unknown_status_rejected(store):
    t = await store.create(make_ticket())
    with pytest.raises(ValueError):
        await store.transition(t.id, from_statuses=(PENDING,), to="paid")


async def test_file_store_survives_reload(tmp_path):
    path = str(tmp_path / "data" / "tickets.json")
    s1 = FileTicketStore(path)
    t = await s1.create(make_ticket())
    await s1.claim_pending(t.id, provider_ref="FLW-9")

    s2 = FileTicketStore(path)
    again = await s2.get_by_ticket_id(t.ticket_id)
    assert again.payment_status == PROCESSING
    assert again.provider_ref == "FLW-9"
    assert again.created_at == t.created_at


async def test_rejected_create_leaves_no_partial_record(store):
    first = await store.create(make_ticket())
    clash = make_ticket(provider_ref="FLW-CLASH")
    with pytest.raises(DuplicateTicketError):
        await store.create(clash)

    assert await store.get(clash.id) is None
    assert await store.get_by_provider_ref("FLW-CLASH") is None
    assert await store.get_by_ticket_id(first.ticket_id) == first
    assert [t.id for t in await store.list_all()] == [first.id]


class ThreadRecordingStore(FileTicketStore):
    def __init__(self, path):
        self.flush_threads = []
        super().__init__(path)

    def _flush(self):
        self.flush_threads.append(threading.get_ident())
        super()._flush()


async def test_file_store_writes_off_the_event_loop(tmp_path):
    s = ThreadRecordingStore(str(tmp_path / "tickets.json"))
    s.flush_threads.clear()
    t = await s.create(make_ticket())
    await s.claim_pending(t.id)

    loop_thread = threading.get_ident()
    assert len(s.flush_threads) == 2
    assert loop_thread not in s.flush_threads


def test_new_store_requires_backend_arguments(tmp_path):
    with pytest.raises(RuntimeError):
        new_store("sql")
    with pytest.raises(RuntimeError):
        new_store("redis")
    with pytest.raises(RuntimeError, match="unknown ticket store backend"):
        new_store("mongo", path=str(tmp_path / "x.json"))
    s = new_store("file", path=str(tmp_path / "x.json"))
    assert isinstance(s, FileTicketStore)
