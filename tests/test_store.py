# tests/test_store.py
import asyncio
import re

import httpx
import pytest

from conftest import FakeGateway, drain, make_store, make_ticket
from helpdesk_agent.gateway import RecordGateway
from helpdesk_agent.models import TicketDraft, TicketSeverity, TicketStatus
from helpdesk_agent.store import SYNC_FAILED_MESSAGE, StoreEvent


def boot_failure_draft(**overrides) -> TicketDraft:
    fields = {
        "requester": "1234",
        "pid": "03264",
        "subject": "PC won't boot",
        "category": "System Unit",
        "description": "PC does not power on past the logo",
        "location": "Accounting Department",
        "contact_number": "09505392032",
        "superior_contact": "boss@example.com",
        "severity": TicketSeverity.MINOR,
    }
    fields.update(overrides)
    return TicketDraft(**fields)


@pytest.mark.asyncio
async def test_create_returns_before_the_remote_write_completes(gateway):
    gateway.write_gate = asyncio.Event()
    store = make_store(gateway)

    ticket = store.create(boot_failure_draft())

    assert re.fullmatch(r"\d{5}", ticket.id)
    assert ticket.status == TicketStatus.OPEN
    assert ticket.technician == "Unassigned"
    assert store.tickets[0] == ticket

    await drain()
    # the write has been issued but is still waiting on the remote side
    assert gateway.sent[0][0] == "create"
    assert gateway.sent[0][1]["id"] == ticket.id
    assert store.tickets[0] == ticket

    gateway.write_gate.set()
    store.dispose()


@pytest.mark.asyncio
async def test_create_splits_requester_into_email_or_pin(gateway):
    store = make_store(gateway)

    by_pin = store.create(boot_failure_draft(requester="1234"))
    by_email = store.create(boot_failure_draft(requester="ana@example.com"))

    assert by_pin.employee_pin == "1234"
    assert by_pin.requester_email == "N/A"
    assert by_email.requester_email == "ana@example.com"
    assert by_email.employee_pin == ""
    assert by_email.requester_contact == "ana@example.com"
    assert by_pin.date_created == "October 8, 2024"
    assert by_pin.troubleshooting_log == "No troubleshooting steps recorded by AI."
    store.dispose()


@pytest.mark.asyncio
async def test_create_prefixes_requester_info_for_account_requests(gateway):
    store = make_store(gateway)

    ticket = store.create(
        boot_failure_draft(requester_name="Ana Cruz", position="Auditor", description="Reset my password")
    )

    assert ticket.description.startswith("[Requester Info]\nName: Ana Cruz\nPosition: Auditor\nDept: N/A")
    assert ticket.description.endswith("[Issue]\nReset my password")
    store.dispose()


@pytest.mark.asyncio
async def test_mutations_while_gateway_unreachable_stay_local(unreachable_gateway):
    store = make_store(unreachable_gateway)

    ticket = store.create(boot_failure_draft())
    store.append_log(ticket.id, "User restarted device: no change")
    store.close(ticket.id, "Replaced PSU")
    await drain()

    cached = store.get_by_id(ticket.id)
    assert cached.status == TicketStatus.CLOSED
    assert cached.log_lines()[-2:] == [
        "[09:30]: User restarted device: no change",
        "[System]: Closed - Replaced PSU",
    ]
    assert [action for action, _ in unreachable_gateway.sent] == ["create", "updateLog", "closeTicket"]

    await store.refresh()

    assert store.last_error == SYNC_FAILED_MESSAGE
    assert store.get_by_id(ticket.id) == cached
    store.dispose()


def test_search_matches_pid_pin_and_email():
    store = make_store(FakeGateway())
    by_pid = make_ticket(id="10001", pid="AB-03264", requester_email="N/A", employee_pin="")
    by_pin = make_ticket(id="10002", pid="77777", requester_email="N/A", employee_pin="4321")
    by_email = make_ticket(id="10003", pid="88888", requester_email="Ana.Cruz@Example.com")
    store.tickets = [by_pid, by_pin, by_email]

    assert store.search("ab-0326") == [by_pid]
    assert store.search("4321") == [by_pin]
    assert store.search("432") == []
    assert store.search("ana.cruz@example") == [by_email]
    assert store.search("") == []
    assert store.search("   ") == []


@pytest.mark.asyncio
async def test_close_is_idempotent_on_status_but_always_adds_a_line(gateway):
    store = make_store(gateway)
    store.tickets = [make_ticket(id="83118")]

    counts = [len(store.get_by_id("83118").log_lines())]
    for _ in range(3):
        closed = store.close("83118", "Resolved by user")
        assert closed.status == TicketStatus.CLOSED
        counts.append(len(closed.log_lines()))

    assert counts == [1, 2, 3, 4]
    store.dispose()


@pytest.mark.asyncio
async def test_append_log_adds_exactly_one_line_per_call(gateway):
    store = make_store(gateway)
    store.tickets = [make_ticket(id="83118", troubleshooting_log="")]

    store.append_log("83118", "Reseated RAM\nstill no display")
    store.append_log("83118", "")
    ticket = store.get_by_id("83118")

    assert ticket.log_lines() == ["[09:30]: Reseated RAM still no display", "[09:30]: "]
    store.dispose()


@pytest.mark.asyncio
async def test_append_log_on_unknown_ticket_still_sends_the_write(gateway):
    store = make_store(gateway)
    events = []
    store.subscribe(events.append)

    assert store.append_log("99999", "Checked cables") is None
    await drain()

    assert events == []
    assert gateway.sent == [("updateLog", {"ticketId": "99999", "textToAppend": "[09:30]: Checked cables"})]
    store.dispose()


@pytest.mark.asyncio
async def test_refresh_replaces_cache_newest_first():
    older = make_ticket(id="10001")
    newer = make_ticket(id="10002")
    gateway = FakeGateway(snapshot=[older, newer])
    store = make_store(gateway)
    store.tickets = [make_ticket(id="55555")]
    store.last_error = "stale"
    events = []
    store.subscribe(events.append)

    await store.refresh()

    assert [t.id for t in store.tickets] == ["10002", "10001"]
    assert store.last_error is None
    assert store.syncing is False
    assert events == [StoreEvent.SYNC_STARTED, StoreEvent.SYNCED]


@pytest.mark.asyncio
async def test_refresh_with_malformed_data_keeps_cache_and_reports_once():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>Script error</html>")

    gateway = RecordGateway("https://sheet.example.com/exec", transport=httpx.MockTransport(handler))
    store = make_store(gateway)
    cached = [make_ticket(id="83118")]
    store.tickets = cached
    events = []
    store.subscribe(events.append)

    await store.refresh()

    assert store.tickets == cached
    assert store.last_error is not None
    assert store.syncing is False
    assert events.count(StoreEvent.SYNC_FAILED) == 1
    assert events == [StoreEvent.SYNC_STARTED, StoreEvent.SYNC_FAILED]
    await gateway.aclose()


@pytest.mark.asyncio
async def test_delayed_refresh_can_drop_an_unsynced_ticket():
    remote = make_ticket(id="10001")
    gateway = FakeGateway(snapshot=[remote])
    store = make_store(gateway, create_refresh_delay=0.01)

    created = store.create(boot_failure_draft())
    assert store.get_by_id(created.id) is not None

    await asyncio.sleep(0.05)

    # the sheet never received the row, so the overwrite hides it
    assert gateway.reads == 1
    assert store.get_by_id(created.id) is None
    assert [t.id for t in store.tickets] == ["10001"]
    store.dispose()


class SlowFirstReadGateway(FakeGateway):
    """Holds the first snapshot read open until released."""

    def __init__(self, snapshot=None):
        super().__init__(snapshot)
        self.release_first = asyncio.Event()

    async def fetch_snapshot(self):
        snapshot = await super().fetch_snapshot()
        if self.reads == 1:
            await self.release_first.wait()
        return snapshot


@pytest.mark.asyncio
async def test_overlapping_refreshes_last_to_land_wins():
    gateway = SlowFirstReadGateway(snapshot=[make_ticket(id="11111")])
    store = make_store(gateway)

    first = asyncio.create_task(store.refresh())
    await drain()
    assert store.syncing is True

    gateway.snapshot = [make_ticket(id="22222")]
    await store.refresh()
    assert [t.id for t in store.tickets] == ["22222"]

    gateway.release_first.set()
    await first

    # the older read landed last and overwrote the newer one
    assert [t.id for t in store.tickets] == ["11111"]
    assert store.syncing is False
    assert store.last_error is None


@pytest.mark.asyncio
async def test_generated_ids_are_not_checked_for_collisions(gateway):
    store = make_store(gateway, id_factory=lambda: "12345")

    first = store.create(boot_failure_draft())
    second = store.create(boot_failure_draft(pid="04000"))

    assert first.id == second.id == "12345"
    assert len(store.tickets) == 2
    store.dispose()


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(gateway):
    store = make_store(gateway)
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.identify_user("1234")

    assert seen == [StoreEvent.USER_IDENTIFIED]
    assert store.identified_user == "1234"


@pytest.mark.asyncio
async def test_unsubscribe_and_dispose(gateway):
    store = make_store(gateway, refresh_delay=0.01)
    store.tickets = [make_ticket(id="83118")]
    seen = []
    unsubscribe = store.subscribe(seen.append)

    unsubscribe()
    store.append_log("83118", "Checked cables")
    store.dispose()
    await asyncio.sleep(0.05)

    assert seen == []
    assert gateway.reads == 0


def test_mutation_without_event_loop_is_still_applied_locally():
    gateway = FakeGateway()
    store = make_store(gateway)

    ticket = store.create(boot_failure_draft())

    assert store.tickets == [ticket]
    assert gateway.sent == []


@pytest.mark.asyncio
async def test_upload_attachment_returns_hosted_url(gateway):
    store = make_store(gateway)

    url = await store.upload_attachment("screen.png", b"\x89PNG", "image/png")

    assert url == "https://files.example.com/screen.png"
