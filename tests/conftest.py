import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, List

import pytest

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))


def _tool_call(call_id: str, name: str, arguments: str = "{}") -> SimpleNamespace:
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
    )


def _completion(content: str | None = None, tool_calls: List[Any] | None = None) -> SimpleNamespace:
    message = SimpleNamespace(role="assistant", content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def completion() -> Callable[..., SimpleNamespace]:
    """Factory for chat completion responses shaped like the OpenAI SDK's."""
    return _completion


@pytest.fixture
def tool_call() -> Callable[..., SimpleNamespace]:
    """Factory for tool call entries of a chat completion message."""
    return _tool_call
