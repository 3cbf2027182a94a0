"""Agent package for the call assistant.

Exposes the turn-level service while keeping the tool registry, the
model/tool loop and the keyword fast path in separate modules.
"""

from .assistant import (
    CallAssistantService,
    get_call_assistant_async,
    reset_call_assistant,
)
from .executor import TurnExecutor, TurnResult
from .tools import ToolRegistry, build_tool_registry

__all__ = [
    "CallAssistantService",
    "ToolRegistry",
    "TurnExecutor",
    "TurnResult",
    "build_tool_registry",
    "get_call_assistant_async",
    "reset_call_assistant",
]
