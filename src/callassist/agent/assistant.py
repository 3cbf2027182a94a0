import asyncio
import json
import logging
from typing import List

from openai import AsyncOpenAI

from ..errors import ModelInvocationError
from ..models import OrderRecord, SessionState
from ..services.crm import CrmClient, get_crm_client
from ..services.session_store import SessionStore, get_session_store_async
from ..settings import Settings, get_settings
from .executor import TurnExecutor
from .intents import answer_from_orders
from .tools import build_tool_registry

logger = logging.getLogger(__name__)


def build_system_prompt(base_prompt: str, customer_name: str, orders: List[OrderRecord]) -> str:
    """Base instruction plus what we already know about the caller."""
    parts = [base_prompt]
    if customer_name:
        parts.append(f"The caller's name is {customer_name}.")
    if orders:
        parts.append(
            "Provide order information from the following order details: "
            + json.dumps([o.to_dict() for o in orders])
        )
    return "\n".join(parts)


class CallAssistantService:
    """Runs one caller turn: session load, fast path or agent loop, session save."""

    def __init__(
        self,
        store: SessionStore,
        executor: TurnExecutor,
        crm: CrmClient,
        settings: Settings,
    ) -> None:
        self._store = store
        self._executor = executor
        self._crm = crm
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings

    async def _create_session(self, session_key: str, caller: str) -> SessionState:
        """New session: fetch the caller's orders once and greet them by name."""
        name, orders = await self._crm.load_orders(caller) if caller else (None, [])
        customer_name = name or ""
        greeting = self._settings.greeting_template.format(
            name=customer_name or self._settings.default_customer_name
        )
        session = SessionState(
            session_key=session_key,
            caller=caller,
            customer_name=customer_name,
            messages=[{"role": "assistant", "content": greeting}],
            orders=orders,
        )
        await self._store.save(session)
        logger.info("Session %s created with %d cached orders", session_key, len(orders))
        return session

    async def start_call(self, session_key: str, caller: str) -> str | None:
        """Inbound call: greeting text for a new session, None when one already exists."""
        async with self._store.lock(session_key):
            session = await self._store.load(session_key)
            if session is not None and not session.is_new:
                return None
            session = await self._create_session(session_key, caller)
            return session.messages[0]["content"]

    async def handle_turn(self, session_key: str, caller: str, transcript: str) -> str:
        """Answer one utterance. Never raises for model or tool failures."""
        async with self._store.lock(session_key):
            session = await self._store.load(session_key)
            if session is None or session.is_new:
                logger.info("No history for %s; greeting instead of answering", session_key)
                session = await self._create_session(session_key, caller)
                return session.messages[0]["content"]

            transcript = transcript.strip()
            if not transcript:
                return self._settings.no_input_message

            logger.debug("Session %s user said: %.200s", session_key, transcript)
            history = session.messages + [{"role": "user", "content": transcript}]

            answer = answer_from_orders(transcript, session.orders)
            if answer is not None:
                logger.info("Session %s answered from cached orders", session_key)
            else:
                answer = await self._run_agent(session, history)

            session.messages = history + [{"role": "assistant", "content": answer}]
            await self._store.save(session)
            return answer

    async def _run_agent(self, session: SessionState, history: List[dict]) -> str:
        system_prompt = build_system_prompt(
            self._settings.agent_system_prompt, session.customer_name, session.orders
        )
        try:
            result = await asyncio.wait_for(
                self._executor.run(history, system_prompt),
                timeout=self._settings.turn_timeout_seconds,
            )
        except ModelInvocationError as e:
            logger.error("Session %s: model unavailable: %s", session.session_key, e)
            return self._settings.fallback_message
        except asyncio.TimeoutError:
            logger.error(
                "Session %s: turn exceeded %.1fs",
                session.session_key,
                self._settings.turn_timeout_seconds,
            )
            return self._settings.fallback_message

        session.tool_calls_count += result.tool_calls_count
        return result.answer


_SERVICE: CallAssistantService | None = None


async def get_call_assistant_async() -> CallAssistantService:
    """Build the service once: tool registry, executor, CRM client and session store."""
    global _SERVICE
    if _SERVICE is None:
        settings = get_settings()
        crm = get_crm_client()
        executor = TurnExecutor(
            client=AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
            ),
            registry=build_tool_registry(crm),
            model=settings.model,
            temperature=settings.temperature,
            max_tool_rounds=settings.max_tool_rounds,
            fallback_message=settings.fallback_message,
        )
        _SERVICE = CallAssistantService(
            store=await get_session_store_async(),
            executor=executor,
            crm=crm,
            settings=settings,
        )
    return _SERVICE


def reset_call_assistant() -> None:
    """Forget the cached service (on shutdown)."""
    global _SERVICE
    _SERVICE = None
