import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types
from pydantic import BaseModel, Field

from .models import ChatRole, ChatTurn

logger = logging.getLogger(__name__)


class ModelServiceError(Exception):
    """The model service could not be reached or refused the request."""


class ToolParameter(BaseModel):
    name: str
    description: str
    enum: Optional[List[str]] = None
    required: bool = True


class ToolSpec(BaseModel):
    name: str
    description: str
    parameters: List[ToolParameter] = Field(default_factory=list)


class ToolCall(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    call_id: Optional[str] = None


class ToolResult(BaseModel):
    name: str
    result: Any
    call_id: Optional[str] = None


class ModelReply(BaseModel):
    text: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    # provider-native turn, replayed verbatim in the follow-up request
    raw: Any = Field(default=None, exclude=True)

    @property
    def requests_tools(self) -> bool:
        return bool(self.tool_calls)


class ToolExchange(BaseModel):
    calls: ModelReply
    results: List[ToolResult]


class ModelRequest(BaseModel):
    system_prompt: str
    tools: List[ToolSpec]
    history: List[ChatTurn]
    utterance: str
    tool_exchange: Optional[ToolExchange] = None


class ModelService(ABC):
    @abstractmethod
    async def generate(self, request: ModelRequest) -> ModelReply:
        """Return final text or tool-call requests. Raises ModelServiceError."""


class GeminiModelService(ModelService):
    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        client: Optional[genai.Client] = None,
    ):
        self.model = model
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.temperature = temperature
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key or "REPLACE" in self.api_key:
                raise ModelServiceError("Configuration Error: API Key missing or invalid.")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate(self, request: ModelRequest) -> ModelReply:
        client = self._get_client()
        contents = self._format_conversation(request)
        config = types.GenerateContentConfig(
            system_instruction=request.system_prompt,
            tools=[self._format_tools(request.tools)],
            temperature=self.temperature,
        )
        try:
            response = await client.aio.models.generate_content(
                model=self.model, contents=contents, config=config
            )
        except Exception as e:
            logger.error(f"Error in GeminiModelService.generate: {e}")
            raise ModelServiceError(str(e)) from e
        try:
            return self._parse_response(response)
        except Exception as e:
            logger.error(f"Unreadable response in GeminiModelService.generate: {e}")
            raise ModelServiceError(f"Malformed model response: {e}") from e

    def _format_tools(self, tools: List[ToolSpec]) -> types.Tool:
        declarations = []
        for tool in tools:
            properties = {
                p.name: types.Schema(
                    type=types.Type.STRING, description=p.description, enum=p.enum
                )
                for p in tool.parameters
            }
            declarations.append(
                types.FunctionDeclaration(
                    name=tool.name,
                    description=tool.description,
                    parameters=types.Schema(
                        type=types.Type.OBJECT,
                        properties=properties,
                        required=[p.name for p in tool.parameters if p.required],
                    ),
                )
            )
        return types.Tool(function_declarations=declarations)

    def _format_conversation(self, request: ModelRequest) -> List[types.Content]:
        contents = []
        for turn in request.history:
            if turn.role == ChatRole.SYSTEM:
                continue
            role = "user" if turn.role == ChatRole.USER else "model"
            contents.append(types.Content(role=role, parts=[types.Part(text=turn.text)]))
        contents.append(
            types.Content(role="user", parts=[types.Part(text=request.utterance)])
        )

        exchange = request.tool_exchange
        if exchange is not None:
            if isinstance(exchange.calls.raw, types.Content):
                contents.append(exchange.calls.raw)
            else:
                contents.append(
                    types.Content(
                        role="model",
                        parts=[
                            types.Part(
                                function_call=types.FunctionCall(
                                    name=call.name, args=call.arguments, id=call.call_id
                                )
                            )
                            for call in exchange.calls.tool_calls
                        ],
                    )
                )
            contents.append(
                types.Content(
                    role="user",
                    parts=[
                        types.Part(
                            function_response=types.FunctionResponse(
                                name=result.name,
                                response={"result": result.result},
                                id=result.call_id,
                            )
                        )
                        for result in exchange.results
                    ],
                )
            )
        return contents

    def _parse_response(self, response: Any) -> ModelReply:
        candidates = getattr(response, "candidates", None) or []
        content = getattr(candidates[0], "content", None) if candidates else None
        parts = getattr(content, "parts", None) or []

        texts = []
        tool_calls = []
        for part in parts:
            call = getattr(part, "function_call", None)
            if call is not None:
                tool_calls.append(
                    ToolCall(
                        name=call.name,
                        arguments=dict(call.args or {}),
                        call_id=getattr(call, "id", None),
                    )
                )
                continue
            text = getattr(part, "text", None)
            if isinstance(text, str) and not getattr(part, "thought", False):
                texts.append(text)

        return ModelReply(
            text="".join(texts) or None,
            tool_calls=tool_calls,
            raw=content,
        )
