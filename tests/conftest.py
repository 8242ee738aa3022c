import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from helpdesk_agent.gateway import GatewayError
from helpdesk_agent.model_service import ModelReply, ModelRequest, ModelService, ModelServiceError
from helpdesk_agent.models import Ticket
from helpdesk_agent.store import TicketStore

FIXED_NOW = datetime(2024, 10, 8, 9, 30)


class FakeGateway:
    """In-memory stand-in for the remote sheet."""

    def __init__(self, snapshot: Optional[List[Ticket]] = None):
        self.snapshot = list(snapshot or [])
        self.read_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.write_gate: Optional[asyncio.Event] = None
        self.sent: List[tuple] = []
        self.upload_error: Optional[Exception] = None
        self.reads = 0
        self.closed = False

    async def fetch_snapshot(self) -> List[Ticket]:
        self.reads += 1
        if self.read_error is not None:
            raise self.read_error
        return list(self.snapshot)

    async def send(self, action: str, payload: Dict[str, Any]) -> None:
        self.sent.append((action, payload))
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.write_error is not None:
            raise self.write_error

    async def upload(self, file_name: str, content: bytes, mime_type: str) -> str:
        if self.upload_error is not None:
            raise self.upload_error
        return f"https://files.example.com/{file_name}"

    async def aclose(self) -> None:
        self.closed = True


class FakeModelService(ModelService):
    """Replays scripted replies and records every request."""

    def __init__(self, replies: List[Any]):
        self.replies = list(replies)
        self.requests: List[ModelRequest] = []

    async def generate(self, request: ModelRequest) -> ModelReply:
        self.requests.append(request)
        if not self.replies:
            raise ModelServiceError("No scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def make_ticket(**overrides) -> Ticket:
    fields = {
        "id": "83118",
        "date_created": "October 8, 2024",
        "pid": "03264",
        "requester_email": "ana@example.com",
        "subject": "Laptop OS activation",
        "category": "Laptop",
        "location": "Internal Audit",
        "contact_number": "09515182952",
        "troubleshooting_log": "Checked license key",
    }
    fields.update(overrides)
    return Ticket(**fields)


def make_store(gateway, **kwargs) -> TicketStore:
    kwargs.setdefault("refresh_delay", 3600)
    kwargs.setdefault("create_refresh_delay", 3600)
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    return TicketStore(gateway, **kwargs)


async def drain(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def unreachable_gateway():
    gw = FakeGateway()
    gw.read_error = GatewayError("Ticket read failed: connection refused")
    gw.write_error = GatewayError("write failed: connection refused")
    return gw
