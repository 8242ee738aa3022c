import asyncio
import logging
from enum import Enum
from typing import List, Optional, Set

import weave

from .gateway import AuditSink
from .model_service import (
    ModelReply,
    ModelRequest,
    ModelService,
    ModelServiceError,
    ToolExchange,
)
from .models import AgentReply, ChatRole, ChatTurn
from .prompts import EMPTY_REPLY, FALLBACK_REPLY, SYSTEM_INSTRUCTION
from .tools import TicketTools

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_FOLLOW_UP = "awaiting_follow_up"
    DONE = "done"


_TRANSITIONS = {
    TurnState.AWAITING_MODEL: {TurnState.EXECUTING_TOOLS, TurnState.DONE},
    TurnState.EXECUTING_TOOLS: {TurnState.AWAITING_FOLLOW_UP},
    # one follow-up round only
    TurnState.AWAITING_FOLLOW_UP: {TurnState.DONE},
    TurnState.DONE: set(),
}


class TurnTransitionError(RuntimeError):
    pass


class Turn:
    """State of a single respond() call."""

    def __init__(self):
        self.state = TurnState.AWAITING_MODEL
        self.history: List[TurnState] = [self.state]

    def advance(self, state: TurnState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise TurnTransitionError(f"Illegal turn transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


def window_history(history: List[ChatTurn], max_turns: int) -> List[ChatTurn]:
    """Trim the transcript to what the model service accepts.

    System turns are dropped, the most recent ``max_turns`` are kept, and the
    result always opens with a user turn, which also removes the seeded
    greeting the agent shows before the user has said anything.
    """

    def from_first_user_turn(turns: List[ChatTurn]) -> List[ChatTurn]:
        for index, turn in enumerate(turns):
            if turn.role == ChatRole.USER:
                return turns[index:]
        return []

    turns = from_first_user_turn([t for t in history if t.role != ChatRole.SYSTEM])
    if max_turns > 0:
        turns = turns[-max_turns:]
    return from_first_user_turn(turns)


class Orchestrator:
    def __init__(
        self,
        model_service: ModelService,
        tools: TicketTools,
        audit: Optional[AuditSink] = None,
        system_prompt: str = SYSTEM_INSTRUCTION,
        max_history_turns: int = 20,
    ):
        self.model_service = model_service
        self.tools = tools
        self.audit = audit
        self.system_prompt = system_prompt
        self.max_history_turns = max_history_turns
        self.last_turn: Optional[Turn] = None
        self._audit_tasks: Set[asyncio.Task] = set()

    @weave.op
    async def respond(self, history: List[ChatTurn], utterance: str) -> AgentReply:
        turn = Turn()
        self.last_turn = turn
        reply = await self._run(turn, history, utterance)
        self._record_audit(utterance, reply.text)
        return reply

    async def _run(self, turn: Turn, history: List[ChatTurn], utterance: str) -> AgentReply:
        request = ModelRequest(
            system_prompt=self.system_prompt,
            tools=self.tools.catalog,
            history=window_history(history, self.max_history_turns),
            utterance=utterance,
        )
        logger.debug(f"Sending {len(request.history)} history turns to the model")

        try:
            first = await self.model_service.generate(request)
        except ModelServiceError as e:
            logger.error(f"Model service error, no tools dispatched: {e}")
            turn.advance(TurnState.DONE)
            return AgentReply(text=FALLBACK_REPLY, tool_used=False)

        if not first.requests_tools:
            turn.advance(TurnState.DONE)
            return AgentReply(text=first.text or EMPTY_REPLY, tool_used=False)

        turn.advance(TurnState.EXECUTING_TOOLS)
        results = [await self.tools.dispatch(call) for call in first.tool_calls]

        turn.advance(TurnState.AWAITING_FOLLOW_UP)
        follow_up = request.model_copy(
            update={"tool_exchange": ToolExchange(calls=first, results=results)}
        )
        try:
            second = await self.model_service.generate(follow_up)
        except ModelServiceError as e:
            logger.error(f"Model service error after running tools {[r.name for r in results]}: {e}")
            turn.advance(TurnState.DONE)
            return AgentReply(text=FALLBACK_REPLY, tool_used=True)

        turn.advance(TurnState.DONE)
        return AgentReply(text=self._final_text(second), tool_used=True)

    def _final_text(self, reply: ModelReply) -> str:
        if reply.requests_tools:
            logger.warning(
                f"Ignoring tool calls in follow-up reply: {[c.name for c in reply.tool_calls]}"
            )
        return reply.text or EMPTY_REPLY

    def _record_audit(self, utterance: str, agent_text: str) -> None:
        if self.audit is None:
            return
        task = asyncio.create_task(self.audit.record("Chat", utterance, agent_text))
        self._audit_tasks.add(task)
        task.add_done_callback(self._audit_tasks.discard)
