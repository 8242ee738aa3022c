
from dataclasses import dataclass

@dataclass
class HelpdeskAgentConfig:
    server: bool = False
    port: int = 8000
    debug: bool = False
    model_name: str = "gemini-2.5-flash"
    temperature: float = 0.2
    max_history_turns: int = 20
    refresh_delay: float = 3.0
    create_refresh_delay: float = 2.0
    request_timeout: float = 30.0
