from __future__ import annotations as _annotations

import asyncio
import logging
import os
from dataclasses import dataclass

import uvicorn
import weave
from dotenv import load_dotenv

from .config import HelpdeskAgentConfig
from .gateway import AuditSink, RecordGateway
from .model_service import GeminiModelService
from .models import ChatRole, ChatTurn
from .orchestrator import Orchestrator
from .prompts import GREETING
from .store import StoreEvent, TicketStore
from .tools import TicketTools

load_dotenv(override=True)

logger = logging.getLogger(__name__)


def get_default_args() -> HelpdeskAgentConfig:
    # Provide defaults for the server and for imports
    return HelpdeskAgentConfig()


def init_tracing() -> None:
    wandb_entity = os.getenv("WANDB_ENTITY")
    wandb_project = os.getenv("WANDB_PROJECT")
    if not wandb_project:
        logger.info("WANDB_PROJECT not set, weave tracing disabled.")
        return
    weave.init(f"{wandb_entity}/{wandb_project}" if wandb_entity else wandb_project)


@dataclass
class HelpdeskComponents:
    orchestrator: Orchestrator
    store: TicketStore
    gateway: RecordGateway

    async def aclose(self) -> None:
        self.store.dispose()
        await self.gateway.aclose()


def build_components(args: HelpdeskAgentConfig) -> HelpdeskComponents:
    gateway_url = os.getenv("HELPDESK_GATEWAY_URL")
    if not gateway_url:
        logger.warning("HELPDESK_GATEWAY_URL not set, tickets will not sync.")
    gateway = RecordGateway(gateway_url, timeout=args.request_timeout)
    store = TicketStore(
        gateway,
        refresh_delay=args.refresh_delay,
        create_refresh_delay=args.create_refresh_delay,
    )
    orchestrator = Orchestrator(
        model_service=GeminiModelService(model=args.model_name, temperature=args.temperature),
        tools=TicketTools(store),
        audit=AuditSink(gateway),
        max_history_turns=args.max_history_turns,
    )
    return HelpdeskComponents(orchestrator=orchestrator, store=store, gateway=gateway)


### RUN


async def main(args: HelpdeskAgentConfig):
    components = build_components(args)
    store = components.store

    def on_store_event(event: StoreEvent) -> None:
        if event == StoreEvent.SYNC_FAILED:
            print(f"[sync] {store.last_error}")

    store.subscribe(on_store_event)
    await store.refresh()

    history = [ChatTurn(role=ChatRole.AGENT, text=GREETING)]
    print(f"agent: {GREETING}")
    try:
        while True:
            user_input = await asyncio.to_thread(input, "Enter your message: ")
            if user_input.strip().lower() in ("exit", "quit"):
                break
            if not user_input.strip():
                continue
            reply = await components.orchestrator.respond(history, user_input)
            print(f"agent: {reply.text}")
            history.append(ChatTurn(role=ChatRole.USER, text=user_input))
            history.append(ChatTurn(role=ChatRole.AGENT, text=reply.text, tool_used=reply.tool_used))
    finally:
        await components.aclose()


if __name__ == "__main__":
    import simple_parsing

    args: HelpdeskAgentConfig = simple_parsing.parse(HelpdeskAgentConfig)
    if args.debug:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)

    init_tracing()

    if args.server:
        uvicorn.run(
            "helpdesk_agent.server:app",
            host="0.0.0.0",
            port=args.port,
        )
    else:
        asyncio.run(main(args))
