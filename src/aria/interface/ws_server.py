"""WebSocket server bridging the UI and avatar to the agent orchestrator.

Runs as a FastAPI application.  Every connection shares one
:class:`AgentOrchestrator`, built once per app and cleaned up when the
app shuts down.

Message protocol (client → server)
-----------------------------------
Text frames are JSON::

    {"type": "text", "query": "..."}   # typed query
    {"type": "listen"}                 # record one utterance and answer it
    {"type": "stop_listening"}         # finish the capture early (discarded)
    {"type": "stop_speaking"}          # cut the spoken answer short
    {"type": "ping"}                   # keep-alive

Message protocol (server → client)
-----------------------------------
::

    {"type": "avatar", "state": "...", "is_listening": bool, "is_speaking": bool}
    {"type": "transcript", "messages": [...]}
    {"type": "notice", "message": "..."}   # busy / voice problems
    {"type": "chunk", "text": "..."}       # streamed answer increment
    {"type": "pong"}
    {"type": "error", "message": "..."}
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from aria.config import Settings, get_settings
from aria.interface.agent import AgentEvent, AgentOrchestrator
from aria.interface.voice.tts import VOICE_PROFILES

logger = logging.getLogger(__name__)

# Event kind → outgoing message type.
_EVENT_TYPES = {
    "state": "avatar",
    "transcript": "transcript",
    "notice": "notice",
    "chunk": "chunk",
}


def event_to_message(event: AgentEvent) -> dict:
    return {"type": _EVENT_TYPES.get(event.kind, event.kind), **event.payload}


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_interface_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[AgentOrchestrator] = None,
) -> FastAPI:
    """Build the agent FastAPI application.

    Exposes ``GET /health`` and a WebSocket at ``/ws``.  Pass a pre-built
    *orchestrator* to share one with other surfaces (or for tests);
    otherwise one is created from *settings* on first use.
    """
    settings = settings or get_settings()
    _agent_cache: dict[str, AgentOrchestrator] = {}
    if orchestrator is not None:
        _agent_cache["a"] = orchestrator

    def get_agent() -> AgentOrchestrator:
        if "a" not in _agent_cache:
            _agent_cache["a"] = AgentOrchestrator.from_settings(settings)
            logger.info("Agent orchestrator initialized")
        return _agent_cache["a"]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        agent = _agent_cache.get("a")
        if agent is not None:
            await agent.cleanup()
            logger.info("Agent orchestrator released")

    app = FastAPI(title="Aria Agent", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health():
        agent = get_agent()
        return {
            "status": "ok",
            "generation_available": settings.generation_available,
            "search_available": settings.search_available,
            "voice_available": agent.voice_available,
            "voices": [
                {"id": p.id, "label": p.label, "description": p.description}
                for p in VOICE_PROFILES.values()
            ],
            "state": agent.state.value,
            "messages": len(agent.conversation),
        }

    # ---- WebSocket handler ----

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        agent = get_agent()

        outbox: asyncio.Queue = asyncio.Queue()
        turns: set[asyncio.Task] = set()

        def on_event(event: AgentEvent) -> None:
            outbox.put_nowait(event_to_message(event))

        def spawn(coro) -> None:
            # Turns outlive the receive loop iteration; keep a reference.
            task = asyncio.create_task(coro)
            turns.add(task)
            task.add_done_callback(turns.discard)

        agent.add_listener(on_event)
        sender = asyncio.create_task(_pump(ws, outbox))
        try:
            outbox.put_nowait({"type": "avatar", **agent.snapshot().to_dict()})
            outbox.put_nowait(
                {"type": "transcript", "messages": agent.conversation.to_dicts()}
            )

            while True:
                raw = await ws.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    outbox.put_nowait({"type": "error", "message": "Invalid JSON"})
                    continue
                if not isinstance(data, dict):
                    outbox.put_nowait({"type": "error", "message": "Expected a JSON object"})
                    continue

                msg_type = data.get("type", "")

                if msg_type == "ping":
                    outbox.put_nowait({"type": "pong"})
                    continue

                if msg_type == "text":
                    spawn(agent.submit(str(data.get("query", ""))))
                    continue

                if msg_type == "listen":
                    spawn(agent.listen())
                    continue

                if msg_type == "stop_listening":
                    spawn(agent.stop_listening())
                    continue

                if msg_type == "stop_speaking":
                    spawn(agent.stop_speaking())
                    continue

                outbox.put_nowait(
                    {"type": "error", "message": f"Unknown message type: {msg_type!r}"}
                )

        except WebSocketDisconnect:
            logger.info("Client disconnected")
        except Exception:
            logger.exception("WebSocket error")
        finally:
            agent.remove_listener(on_event)
            sender.cancel()

    return app


async def _pump(ws: WebSocket, outbox: asyncio.Queue) -> None:
    """Send queued messages in order until the socket goes away."""
    while True:
        message = await outbox.get()
        try:
            await ws.send_text(json.dumps(message))
        except Exception:
            logger.debug("Dropping message for closed socket", exc_info=True)
            return
