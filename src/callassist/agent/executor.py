"""Turn executor: the model/tool loop run once per caller utterance.

States:
    THINKING         the model is asked for an answer or tool calls
    ACTING_ON_TOOLS  requested tools are dispatched, results appended
    DONE             the model answered without tool calls

Tool rounds are capped; past the cap the turn ends with the fallback answer.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from openai import AsyncOpenAI, OpenAIError

from ..errors import ModelInvocationError
from ..models import ToolCall
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    THINKING = "thinking"
    ACTING_ON_TOOLS = "acting_on_tools"
    DONE = "done"


@dataclass
class TurnResult:
    """Final answer of a turn plus the full message sequence it produced."""

    answer: str
    messages: List[Dict[str, Any]] = field(default_factory=list)
    tool_calls_count: int = 0
    rounds: int = 0
    exhausted: bool = False


class TurnExecutor:
    def __init__(
        self,
        client: AsyncOpenAI,
        registry: ToolRegistry,
        model: str,
        temperature: float = 0.0,
        max_tool_rounds: int = 5,
        fallback_message: str = "I'm sorry, I couldn't process your request.",
    ) -> None:
        self._client = client
        self._registry = registry
        self._model = model
        self._temperature = temperature
        self._max_tool_rounds = max_tool_rounds
        self._fallback_message = fallback_message

    async def run(self, history: List[Dict[str, Any]], system_prompt: str) -> TurnResult:
        """Run the loop until the model answers or the round cap is hit.

        Args:
            history: Session messages, oldest first. Not mutated.
            system_prompt: Instruction placed ahead of the history.

        Returns:
            TurnResult with the answer and every message of the turn.

        Raises:
            ModelInvocationError: the model call failed.
        """
        messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        messages.extend(dict(m) for m in history)

        rounds = 0
        tool_calls_count = 0
        state = TurnState.THINKING

        while True:
            logger.debug("Turn state=%s round=%d", state.value, rounds)
            message = await self._call_model(messages)
            tool_calls = self._parse_tool_calls(message)

            if not tool_calls:
                state = TurnState.DONE
                logger.info("Turn %s after %d tool round(s)", state.value, rounds)
                return TurnResult(
                    answer=(message.content or "").strip() or self._fallback_message,
                    messages=messages + [{"role": "assistant", "content": message.content or ""}],
                    tool_calls_count=tool_calls_count,
                    rounds=rounds,
                )

            if rounds >= self._max_tool_rounds:
                logger.warning(
                    "Model still requesting tools after %d rounds; forcing fallback",
                    rounds,
                )
                return TurnResult(
                    answer=self._fallback_message,
                    messages=messages,
                    tool_calls_count=tool_calls_count,
                    rounds=rounds,
                    exhausted=True,
                )

            state = TurnState.ACTING_ON_TOOLS
            messages.append(
                {
                    "role": "assistant",
                    "content": message.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments},
                        }
                        for call in tool_calls
                    ],
                }
            )
            for call in tool_calls:
                tool_calls_count += 1
                messages.append(await self._dispatch(call))
            logger.info("Tools called in order: %s", ", ".join(c.name for c in tool_calls))

            rounds += 1
            state = TurnState.THINKING

    async def _call_model(self, messages: List[Dict[str, Any]]) -> Any:
        kwargs: Dict[str, Any] = {}
        schemas = self._registry.schemas()
        if schemas:
            kwargs["tools"] = schemas
            kwargs["tool_choice"] = "auto"
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                **kwargs,
            )
        except (OpenAIError, TimeoutError, ConnectionError) as e:
            logger.error("Model call failed: %s", e)
            raise ModelInvocationError(str(e)) from e

        if not response.choices:
            raise ModelInvocationError("Model returned no choices")
        return response.choices[0].message

    @staticmethod
    def _parse_tool_calls(message: Any) -> List[ToolCall]:
        calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            function = getattr(tc, "function", None)
            if function is None or not getattr(function, "name", None):
                raise ModelInvocationError(f"Malformed tool call from model: {tc!r:.200}")
            calls.append(ToolCall(id=tc.id, name=function.name, arguments=function.arguments or ""))
        return calls

    async def _dispatch(self, call: ToolCall) -> Dict[str, Any]:
        """Run one tool call; always returns a tool message answering call.id."""
        tool = self._registry.resolve(call.name)
        if tool is None:
            logger.error("Tool %s not found", call.name)
            return self._tool_message(call, f"Error: Tool {call.name} not found")

        try:
            arguments = json.loads(call.arguments) if call.arguments else {}
        except json.JSONDecodeError as e:
            logger.error("Invalid tool arguments for %s: %s", call.name, e)
            return self._tool_message(call, f"Error: invalid arguments - {e}")
        if not isinstance(arguments, dict):
            return self._tool_message(call, "Error: invalid arguments - expected a JSON object")

        logger.info("Executing tool: %s", call.name)
        try:
            result = await tool.invoke(arguments)
        except Exception as e:
            # recovered locally, the model sees the error text
            logger.exception("Error executing tool %s", call.name)
            return self._tool_message(call, f"Error: {e}")
        return self._tool_message(call, result.content)

    @staticmethod
    def _tool_message(call: ToolCall, content: str) -> Dict[str, Any]:
        return {"role": "tool", "tool_call_id": call.id, "content": content}
