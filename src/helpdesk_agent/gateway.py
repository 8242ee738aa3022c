"""HTTP clients for the remote ticket sheet and its audit log.

The remote side is a single web-app endpoint in front of a row store.
``GET`` returns the whole ticket table, ``POST`` carries an ``action`` tag
(``create``, ``updateLog``, ``closeTicket``, ``logAudit``, ``upload``).
Rows are exchanged as named-field objects tagged with ``SCHEMA_VERSION`` so
that a column reorder on either side cannot silently shift values between
fields.
"""
import base64
import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .models import Ticket

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

ROW_FIELDS = (
    "id",
    "dateCreated",
    "pid",
    "requesterEmail",
    "employeePin",
    "immediateSuperior",
    "superiorContact",
    "subject",
    "category",
    "description",
    "technician",
    "location",
    "status",
    "severity",
    "contactNumber",
    "techNotes",
    "troubleshootingLog",
    "attachmentUrl",
)


class GatewayError(Exception):
    pass


def _coerce_cell(value: Any) -> Optional[str]:
    # Sheets hands back numbers for numeric-looking cells (ids, PIDs, PINs)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def row_to_ticket(row: Dict[str, Any]) -> Ticket:
    cells = {}
    for field in ROW_FIELDS:
        value = _coerce_cell(row.get(field))
        if value is not None:
            cells[field] = value
    return Ticket.model_validate(cells)


def parse_snapshot(data: Any) -> List[Ticket]:
    """Decode a full-table read into tickets, oldest first.

    Accepts the versioned envelope ``{"schemaVersion": 1, "tickets": [...]}``
    and the unversioned bare array of named-field rows. Anything else,
    including positional (array) rows, is rejected as a whole. Named rows
    that fail validation (blank or hand-edited sheet rows) are skipped.
    """
    if isinstance(data, dict):
        version = data.get("schemaVersion")
        if version != SCHEMA_VERSION:
            raise GatewayError(f"Unsupported ticket schema version: {version!r}")
        rows = data.get("tickets")
    else:
        rows = data
    if not isinstance(rows, list):
        raise GatewayError(f"Expected a list of ticket rows, got {type(rows).__name__}")

    tickets = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise GatewayError(f"Row {index} is not a named-field object: {row!r}")
        try:
            tickets.append(row_to_ticket(row))
        except ValidationError as e:
            logger.warning(f"Skipping ticket row {index}: {e}")
    return tickets


class RecordGateway:
    def __init__(
        self,
        url: Optional[str],
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        # the web app answers through a redirect
        self.client = httpx.AsyncClient(
            timeout=timeout, transport=transport, follow_redirects=True
        )

    def _require_url(self) -> str:
        if not self.url:
            raise GatewayError("Gateway URL not set.")
        return self.url

    async def fetch_snapshot(self) -> List[Ticket]:
        url = self._require_url()
        try:
            response = await self.client.get(url, params={"t": int(time.time() * 1000)})
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise GatewayError(f"Ticket read failed: {e}") from e
        except ValueError as e:
            raise GatewayError(f"Ticket read returned non-JSON body: {e}") from e
        tickets = parse_snapshot(data)
        logger.debug(f"Fetched {len(tickets)} ticket rows")
        return tickets

    async def send(self, action: str, payload: Dict[str, Any]) -> None:
        url = self._require_url()
        body = {**payload, "action": action, "schemaVersion": SCHEMA_VERSION}
        logger.debug(f"Sending {action} to gateway: {body}")
        try:
            response = await self.client.post(url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise GatewayError(f"{action} write failed: {e}") from e

    async def upload(self, file_name: str, content: bytes, mime_type: str) -> str:
        url = self._require_url()
        body = {
            "action": "upload",
            "fileName": file_name,
            "mimeType": mime_type or "application/octet-stream",
            "fileData": base64.b64encode(content).decode("ascii"),
        }
        logger.info(f"Uploading {file_name} ({len(content)} bytes)")
        try:
            response = await self.client.post(url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise GatewayError(f"Upload failed: {e}") from e
        except ValueError as e:
            raise GatewayError("Server returned unexpected response to upload.") from e

        if isinstance(data, dict) and data.get("success") and data.get("url"):
            return data["url"]
        error = data.get("error") if isinstance(data, dict) else None
        raise GatewayError(error or "Server did not return a URL")

    async def aclose(self) -> None:
        await self.client.aclose()


class AuditSink:
    """Best-effort activity log; never raises."""

    def __init__(self, gateway: RecordGateway):
        self.gateway = gateway

    async def record(self, activity: str, user_text: str = "", agent_text: str = "") -> None:
        try:
            await self.gateway.send(
                "logAudit",
                {"activity": activity, "userText": user_text, "agentText": agent_text},
            )
        except Exception as e:
            logger.debug(f"Audit record dropped: {e}")
