import uuid
from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNASSIGNED_TECHNICIAN = "Unassigned"
NO_EMAIL = "N/A"
EMPTY_LOG_PLACEHOLDER = "No troubleshooting steps recorded by AI."


class TicketStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In-Progress"
    ON_HOLD = "On-Hold"
    DONE = "Done"
    CLOSED = "Closed"


class TicketSeverity(str, Enum):
    MINOR = "Minor"
    MAJOR = "Major"
    CRITICAL = "Critical"


class WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Ticket(WireModel):
    id: str
    date_created: str = ""
    pid: str
    requester_email: str = NO_EMAIL
    employee_pin: str = ""
    immediate_superior: str = ""
    superior_contact: str = ""
    subject: str = ""
    category: str = ""
    description: str = ""
    technician: str = UNASSIGNED_TECHNICIAN
    location: str = ""
    status: TicketStatus = TicketStatus.OPEN
    severity: TicketSeverity = TicketSeverity.MINOR
    contact_number: str = ""
    tech_notes: str = ""
    troubleshooting_log: str = ""
    attachment_url: str = ""

    @property
    def requester_contact(self) -> str:
        if self.requester_email and self.requester_email != NO_EMAIL:
            return self.requester_email
        return self.employee_pin

    @property
    def escalation_contact(self) -> str | None:
        if not (self.immediate_superior or self.superior_contact):
            return None
        return f"{self.immediate_superior} <{self.superior_contact}>".strip()

    def log_lines(self) -> List[str]:
        return [line for line in self.troubleshooting_log.splitlines() if line.strip()]

    def attachment_urls(self) -> List[str]:
        return [url.strip() for url in self.attachment_url.split(",") if url.strip()]


class TicketDraft(WireModel):
    """Arguments of the createTicket tool.

    Only the structural fields are required here; deciding which of the rest
    are mandatory for a given kind of request is left to the model.
    """

    requester: str
    pid: str
    subject: str = ""
    category: str = ""
    description: str = ""
    location: str = ""
    severity: TicketSeverity = TicketSeverity.MINOR
    contact_number: str = ""
    immediate_superior: str = ""
    superior_contact: str = ""
    troubleshooting_log: str = ""
    attachment_url: str = ""
    # account support requests
    requester_name: str | None = None
    position: str | None = None
    department: str | None = None

    @property
    def is_email(self) -> bool:
        return "@" in self.requester

    def full_description(self) -> str:
        if not (self.requester_name or self.position):
            return self.description
        return (
            "[Requester Info]\n"
            f"Name: {self.requester_name or 'N/A'}\n"
            f"Position: {self.position or 'N/A'}\n"
            f"Dept: {self.department or 'N/A'}\n\n"
            f"[Issue]\n{self.description}"
        )


class ChatRole(str, Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class ChatTurn(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:16])
    role: ChatRole
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)
    tool_used: bool = False


class AgentReply(BaseModel):
    text: str
    tool_used: bool = False
