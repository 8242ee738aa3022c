import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List

from fastapi import FastAPI, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .gateway import GatewayError
from .main import HelpdeskComponents, build_components, get_default_args, init_tracing
from .models import AgentReply, ChatTurn
from .store import TicketStore

logger = logging.getLogger(__name__)


def _default_components() -> HelpdeskComponents:
    init_tracing()
    return build_components(get_default_args())


def _store_status(store: TicketStore) -> Dict[str, Any]:
    return {
        "syncing": store.syncing,
        "lastError": store.last_error,
        "identifiedUser": store.identified_user,
        "ticketCount": len(store.tickets),
    }


def create_app(
    components_factory: Callable[[], HelpdeskComponents] = _default_components,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup...")
        components = components_factory()
        app.state.components = components
        await components.store.refresh()
        yield
        await components.aclose()
        logger.info("Application shutdown.")

    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/helpdesk-agent")
    async def run_agent_endpoint(request: Request) -> AgentReply:
        data = await request.json()
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object.")
        user_message = data.get("message")
        if not user_message:
            raise HTTPException(status_code=400, detail="'message' is required.")

        raw_history = data.get("history") or []
        if not isinstance(raw_history, list):
            raise HTTPException(status_code=400, detail="'history' must be a list of turns.")
        try:
            history: List[ChatTurn] = [ChatTurn.model_validate(t) for t in raw_history]
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid history: {e}")

        logger.info(f"[INCOMING REQUEST] {len(history)} history turns")
        components: HelpdeskComponents = request.app.state.components
        return await components.orchestrator.respond(history, user_message)

    @app.get("/tickets")
    async def list_tickets(request: Request, query: str | None = None):
        store: TicketStore = request.app.state.components.store
        tickets = store.search(query) if query is not None else store.tickets
        return [t.to_wire() for t in tickets]

    @app.get("/tickets/{ticket_id}")
    async def get_ticket(request: Request, ticket_id: str):
        store: TicketStore = request.app.state.components.store
        ticket = store.get_by_id(ticket_id)
        if ticket is None:
            raise HTTPException(status_code=404, detail=f"Ticket {ticket_id} not found.")
        return ticket.to_wire()

    @app.post("/tickets/refresh")
    async def refresh_tickets(request: Request):
        store: TicketStore = request.app.state.components.store
        await store.refresh()
        return _store_status(store)

    @app.post("/attachments")
    async def upload_attachment(request: Request, file: UploadFile):
        store: TicketStore = request.app.state.components.store
        content = await file.read()
        try:
            url = await store.upload_attachment(
                file.filename or "attachment", content, file.content_type or ""
            )
        except GatewayError as e:
            logger.error(f"Attachment upload failed: {e}")
            raise HTTPException(status_code=502, detail=str(e))
        return {"url": url}

    @app.get("/status")
    async def status(request: Request):
        return _store_status(request.app.state.components.store)

    return app


app = create_app()
