"""Tool catalog offered to the model and the handlers behind it.

Each handler takes the raw argument dict from the model, delegates to the
ticket store and returns a JSON-like result. Failures come back as
``{"error": reason}`` so the model can narrate them instead of the turn
blowing up.
"""
import logging
from typing import Any, Awaitable, Callable, Dict

from pydantic import ValidationError

from .model_service import ToolCall, ToolParameter, ToolResult, ToolSpec
from .models import TicketDraft, TicketSeverity
from .prompts import (
    APPEND_LOG_TOOL_DESCRIPTION,
    CLOSE_TICKET_TOOL_DESCRIPTION,
    CREATE_TICKET_TOOL_DESCRIPTION,
    LOOKUP_TICKET_TOOL_DESCRIPTION,
    SEARCH_TICKETS_TOOL_DESCRIPTION,
)
from .store import TicketStore

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]

TICKET_ID_PARAM = ToolParameter(name="ticketId", description="The 5-digit Ticket ID.")

TOOL_CATALOG = [
    ToolSpec(
        name="lookupTicket",
        description=LOOKUP_TICKET_TOOL_DESCRIPTION,
        parameters=[TICKET_ID_PARAM],
    ),
    ToolSpec(
        name="searchTickets",
        description=SEARCH_TICKETS_TOOL_DESCRIPTION,
        parameters=[
            ToolParameter(name="query", description="The PID, PIN or email to search for.")
        ],
    ),
    ToolSpec(
        name="createTicket",
        description=CREATE_TICKET_TOOL_DESCRIPTION,
        parameters=[
            ToolParameter(name="requester", description="User email or employee PIN."),
            ToolParameter(name="pid", description="Property ID (PID) of the asset."),
            ToolParameter(name="subject", description="One-line issue summary."),
            ToolParameter(name="category", description="Asset category, e.g. Laptop, Printer."),
            ToolParameter(
                name="description",
                description="Detailed description. For ID requests include the emergency contact here.",
            ),
            ToolParameter(name="location", description="Physical location or department."),
            ToolParameter(
                name="severity",
                description="Minor=single user, Major=department, Critical=company-wide.",
                enum=[s.value for s in TicketSeverity],
            ),
            ToolParameter(name="contactNumber", description="Mobile number."),
            ToolParameter(
                name="immediateSuperior",
                description="Immediate superior's name.",
                required=False,
            ),
            ToolParameter(name="superiorContact", description="Immediate superior's email."),
            ToolParameter(
                name="troubleshootingLog",
                description="Summary of the steps already taken before the ticket was created.",
                required=False,
            ),
            ToolParameter(
                name="attachmentUrl",
                description="Comma-separated URLs of files the user uploaded in this conversation.",
                required=False,
            ),
            ToolParameter(name="requesterName", description="Full name of the user.", required=False),
            ToolParameter(name="position", description="Job position.", required=False),
            ToolParameter(name="department", description="Department or project name.", required=False),
        ],
    ),
    ToolSpec(
        name="appendTroubleshootingLog",
        description=APPEND_LOG_TOOL_DESCRIPTION,
        parameters=[
            TICKET_ID_PARAM,
            ToolParameter(
                name="text",
                description="The action taken and its result, e.g. 'User restarted device: no change'.",
            ),
        ],
    ),
    ToolSpec(
        name="closeTicket",
        description=CLOSE_TICKET_TOOL_DESCRIPTION,
        parameters=[
            TICKET_ID_PARAM,
            ToolParameter(
                name="reason",
                description="Why the ticket is being closed, e.g. 'Resolved by user'.",
            ),
        ],
    ),
]


def _require(arguments: Dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"{key} is required")
    return str(value).strip()


class TicketTools:
    def __init__(self, store: TicketStore):
        self.store = store
        self.handlers: Dict[str, Handler] = {
            "lookupTicket": self.lookup_ticket,
            "searchTickets": self.search_tickets,
            "createTicket": self.create_ticket,
            "appendTroubleshootingLog": self.append_troubleshooting_log,
            "closeTicket": self.close_ticket,
        }

    @property
    def catalog(self):
        return TOOL_CATALOG

    async def dispatch(self, call: ToolCall) -> ToolResult:
        handler = self.handlers.get(call.name)
        if handler is None:
            logger.warning(f"Model requested unknown tool: {call.name}")
            result: Any = {"error": f"Unknown tool: {call.name}"}
        else:
            logger.info(f"Tool executing: {call.name} {call.arguments}")
            try:
                result = await handler(call.arguments)
            except (ValueError, ValidationError) as e:
                logger.warning(f"Tool {call.name} rejected its arguments: {e}")
                result = {"error": str(e)}
            except Exception as e:
                logger.exception(f"Tool {call.name} failed")
                result = {"error": f"Failed to run {call.name}: {e}"}
        return ToolResult(name=call.name, result=result, call_id=call.call_id)

    async def lookup_ticket(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        ticket = self.store.get_by_id(_require(arguments, "ticketId"))
        if ticket is None:
            return {"error": "Not found."}
        return ticket.to_wire()

    async def search_tickets(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        query = _require(arguments, "query")
        tickets = self.store.search(query)
        self.store.identify_user(query)
        return {"query": query, "tickets": [t.to_wire() for t in tickets]}

    async def create_ticket(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        draft = TicketDraft.model_validate(
            {k: v for k, v in arguments.items() if v is not None}
        )
        ticket = self.store.create(draft)
        self.store.identify_user(draft.requester)
        return {"success": True, "ticketId": ticket.id, "message": "Ticket created."}

    async def append_troubleshooting_log(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        ticket_id = _require(arguments, "ticketId")
        updated = self.store.append_log(ticket_id, _require(arguments, "text"))
        return {"success": True, "ticketId": ticket_id, "cached": updated is not None}

    async def close_ticket(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        ticket_id = _require(arguments, "ticketId")
        updated = self.store.close(ticket_id, _require(arguments, "reason"))
        return {
            "success": True,
            "ticketId": ticket_id,
            "cached": updated is not None,
            "message": "Ticket Closed.",
        }
