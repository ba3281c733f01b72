"""Tool-using conversational assistant."""

from assistant.backend import InMemoryToolBackend, ToolBackend
from assistant.executor import ToolExecutor
from assistant.orchestrator import ChatResult, ConversationOrchestrator
from assistant.registry import ToolRegistry
from assistant.sessions import ChatSessionStore

__all__ = [
    "InMemoryToolBackend",
    "ToolBackend",
    "ToolExecutor",
    "ChatResult",
    "ConversationOrchestrator",
    "ToolRegistry",
    "ChatSessionStore",
]
