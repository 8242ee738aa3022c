"""Local ticket cache kept loosely in step with the remote sheet.

Every mutation is applied to the cache first and returned to the caller
straight away. The matching remote write runs as a detached task with a
single attempt, and a one-shot delayed refresh is scheduled to pull the
sheet back in. A refresh replaces the cache wholesale, so an optimistic
ticket whose write has not landed yet can drop out of view until the next
refresh, and the last refresh to complete wins.
"""
import asyncio
import logging
import random
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from .gateway import GatewayError, RecordGateway
from .models import (
    EMPTY_LOG_PLACEHOLDER,
    NO_EMAIL,
    UNASSIGNED_TECHNICIAN,
    Ticket,
    TicketDraft,
    TicketStatus,
)

logger = logging.getLogger(__name__)

SYNC_FAILED_MESSAGE = "Sync Failed. Please check internet connection."


class StoreEvent(str, Enum):
    SYNC_STARTED = "sync_started"
    SYNCED = "synced"
    SYNC_FAILED = "sync_failed"
    TICKETS_CHANGED = "tickets_changed"
    USER_IDENTIFIED = "user_identified"


Listener = Callable[[StoreEvent], None]


def generate_ticket_id() -> str:
    # 5 digits, no check against existing ids
    return str(random.randint(10000, 99999))


def _single_line(text: str) -> str:
    return " ".join(part.strip() for part in str(text).splitlines() if part.strip())


def _append_line(log: str, line: str) -> str:
    return f"{log}\n{line}" if log else line


class TicketStore:
    def __init__(
        self,
        gateway: RecordGateway,
        refresh_delay: float = 3.0,
        create_refresh_delay: float = 2.0,
        id_factory: Callable[[], str] = generate_ticket_id,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.gateway = gateway
        self.refresh_delay = refresh_delay
        self.create_refresh_delay = create_refresh_delay
        self.id_factory = id_factory
        self.clock = clock

        self.tickets: List[Ticket] = []
        self.syncing = False
        self.last_error: Optional[str] = None
        self.identified_user: Optional[str] = None

        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()

    ### SUBSCRIPTION

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: StoreEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Store listener failed on {event.value}")

    def dispose(self) -> None:
        """Drop all listeners and cancel pending writes and refreshes."""
        self._listeners.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    ### READS

    def get_by_id(self, ticket_id: str) -> Optional[Ticket]:
        ticket_id = str(ticket_id).strip()
        return next((t for t in self.tickets if t.id == ticket_id), None)

    def search(self, query: str) -> List[Ticket]:
        query = (query or "").strip()
        if not query:
            return []
        lowered = query.lower()
        return [
            t
            for t in self.tickets
            if lowered in t.pid.lower()
            or (t.employee_pin and t.employee_pin == query)
            or (t.requester_email and lowered in t.requester_email.lower())
        ]

    def identify_user(self, query: Optional[str]) -> None:
        self.identified_user = query
        self._notify(StoreEvent.USER_IDENTIFIED)

    ### RECONCILIATION

    async def refresh(self) -> None:
        self.syncing = True
        self._notify(StoreEvent.SYNC_STARTED)
        try:
            snapshot = await self.gateway.fetch_snapshot()
        except GatewayError as e:
            logger.error(f"Failed to fetch tickets: {e}")
            self._sync_failed()
            return
        except Exception:
            logger.exception("Unexpected error while fetching tickets")
            self._sync_failed()
            return

        # sheet rows are oldest first
        self.tickets = list(reversed(snapshot))
        self.last_error = None
        self.syncing = False
        logger.info(f"Synced {len(self.tickets)} tickets")
        self._notify(StoreEvent.SYNCED)

    def _sync_failed(self) -> None:
        self.last_error = SYNC_FAILED_MESSAGE
        self.syncing = False
        self._notify(StoreEvent.SYNC_FAILED)

    ### MUTATIONS

    def create(self, draft: TicketDraft) -> Ticket:
        now = self.clock()
        ticket = Ticket(
            id=self.id_factory(),
            date_created=f"{now:%B} {now.day}, {now.year}",
            pid=draft.pid,
            requester_email=draft.requester if draft.is_email else NO_EMAIL,
            employee_pin="" if draft.is_email else draft.requester,
            immediate_superior=draft.immediate_superior,
            superior_contact=draft.superior_contact,
            subject=draft.subject,
            category=draft.category,
            description=draft.full_description(),
            technician=UNASSIGNED_TECHNICIAN,
            location=draft.location,
            status=TicketStatus.OPEN,
            severity=draft.severity,
            contact_number=draft.contact_number,
            troubleshooting_log=draft.troubleshooting_log or EMPTY_LOG_PLACEHOLDER,
            attachment_url=draft.attachment_url,
        )
        if self.get_by_id(ticket.id) is not None:
            logger.warning(f"Generated ticket id {ticket.id} collides with a cached ticket")

        self.tickets = [ticket, *self.tickets]
        logger.info(f"Created ticket {ticket.id} for PID {ticket.pid}")
        self._notify(StoreEvent.TICKETS_CHANGED)

        self._spawn(self._write("create", ticket.to_wire()))
        self._schedule_refresh(self.create_refresh_delay)
        return ticket

    def append_log(self, ticket_id: str, text: str) -> Optional[Ticket]:
        ticket_id = str(ticket_id).strip()
        entry = f"[{self.clock():%H:%M}]: {_single_line(text)}"
        updated = self._update(
            ticket_id,
            lambda t: {"troubleshooting_log": _append_line(t.troubleshooting_log, entry)},
        )
        self._spawn(self._write("updateLog", {"ticketId": ticket_id, "textToAppend": entry}))
        self._schedule_refresh(self.refresh_delay)
        return updated

    def close(self, ticket_id: str, reason: str) -> Optional[Ticket]:
        ticket_id = str(ticket_id).strip()
        note = f"[System]: Closed - {_single_line(reason)}"
        updated = self._update(
            ticket_id,
            lambda t: {
                "status": TicketStatus.CLOSED,
                "troubleshooting_log": _append_line(t.troubleshooting_log, note),
            },
        )
        self._spawn(self._write("closeTicket", {"ticketId": ticket_id, "reason": reason}))
        self._schedule_refresh(self.refresh_delay)
        return updated

    async def upload_attachment(self, file_name: str, content: bytes, mime_type: str) -> str:
        """Upload a file and return its hosted URL. Raises GatewayError."""
        return await self.gateway.upload(file_name, content, mime_type)

    def _update(
        self, ticket_id: str, changes: Callable[[Ticket], Dict[str, Any]]
    ) -> Optional[Ticket]:
        for index, ticket in enumerate(self.tickets):
            if ticket.id == ticket_id:
                updated = ticket.model_copy(update=changes(ticket))
                tickets = list(self.tickets)
                tickets[index] = updated
                self.tickets = tickets
                self._notify(StoreEvent.TICKETS_CHANGED)
                return updated
        logger.warning(f"Ticket {ticket_id} not in local cache; sending remote write only")
        return None

    ### BACKGROUND WORK

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.error("No running event loop; background gateway call dropped.")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write(self, action: str, payload: Dict[str, Any]) -> None:
        try:
            await self.gateway.send(action, payload)
        except GatewayError as e:
            logger.error(f"Failed to save {action} to the sheet: {e}")
        except Exception:
            logger.exception(f"Unexpected error sending {action} to the sheet")

    def _schedule_refresh(self, delay: float) -> None:
        self._spawn(self._delayed_refresh(delay))

    async def _delayed_refresh(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.refresh()
