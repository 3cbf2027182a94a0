import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import Response

from .agent import CallAssistantService, get_call_assistant_async, reset_call_assistant
from .services.session_store import close_session_store
from .settings import get_settings
from .twiml import render_listen


def setup_server_logging(level: str = "INFO") -> logging.Logger:
    """Configure the package logger (console + rotating file) and return the server logger."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger("callassist")
    logger = logging.getLogger("callassist.server")
    if root.handlers:
        return logger

    root.setLevel(level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    return logger


settings = get_settings()
LOGGER = setup_server_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the assistant (tools, session store) at startup; close the store on shutdown."""
    LOGGER.info("Starting call assistant...")
    try:
        await get_call_assistant_async()
        LOGGER.info("Call assistant ready")
    except (OSError, ConnectionError, TimeoutError) as e:
        LOGGER.warning("Call assistant dependencies unavailable: %s", e)
    except Exception as e:
        LOGGER.exception("Failed to build call assistant: %s", e)

    yield

    LOGGER.info("Shutting down...")
    await close_session_store()
    reset_call_assistant()


app = FastAPI(
    title="Call Assistant",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)


def _twiml(xml: str) -> Response:
    return Response(content=xml, media_type="application/xml")


def _session_key(form: Any) -> tuple[str, str]:
    """(session key, caller number) from a Twilio form post; the key is the call SID."""
    caller = str(form.get("From") or "").strip()
    call_sid = str(form.get("CallSid") or "").strip()
    return call_sid or caller or "anonymous", caller


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}


@app.post("/incoming-call")
async def incoming_call(
    request: Request,
    assistant: CallAssistantService = Depends(get_call_assistant_async),
) -> Response:
    """Twilio voice webhook for a new call: greet once, then listen."""
    form = await request.form()
    session_key, caller = _session_key(form)
    LOGGER.info("Incoming call session=%s", session_key)

    try:
        greeting = await assistant.start_call(session_key, caller)
    except Exception as e:
        LOGGER.exception("Call start failed for session=%s: %s", session_key, e)
        greeting = assistant.settings.fallback_message
    return _twiml(render_listen(greeting))


@app.post("/respond")
async def respond(
    request: Request,
    assistant: CallAssistantService = Depends(get_call_assistant_async),
) -> Response:
    """Gather callback: answer the caller's speech, then listen again."""
    form = await request.form()
    session_key, caller = _session_key(form)
    transcript = str(form.get("SpeechResult") or "")
    LOGGER.info("Respond session=%s transcript_len=%d", session_key, len(transcript))

    try:
        answer = await assistant.handle_turn(session_key, caller, transcript)
    except (OSError, ConnectionError, TimeoutError) as e:
        LOGGER.warning("Turn failed for session=%s: %s", session_key, e)
        answer = assistant.settings.fallback_message
    except Exception as e:
        LOGGER.exception("Unexpected error for session=%s: %s", session_key, e)
        answer = assistant.settings.fallback_message
    return _twiml(render_listen(answer))


def run() -> None:
    """Serve the app with uvicorn on the configured host/port."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
