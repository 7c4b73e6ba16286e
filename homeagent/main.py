"""
HomeAgent - Hauptanwendung (FastAPI Server)

Stellt die Engine fuer die Praesentationsschicht bereit:
Status, manuelles Ausloesen von Aktionen, Gedaechtnis-Einblick,
Health-Samples und Live-Updates per WebSocket.
"""

import json
import logging
import os

# ChromaDB Telemetrie deaktivieren
os.environ["ANONYMIZED_TELEMETRY"] = "False"
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .circuit_breaker import registry as breakers
from .config import settings
from .engine import HomeAgent
from .exceptions import ProviderError, ProviderUnavailable, UnknownActionType
from .inference import OllamaInference
from .kv_store import RedisKeyValueStore
from .log_context import RequestContextMiddleware, setup_structured_logging
from .models import HealthSample
from .providers import HealthSampleBuffer
from .vector_index import ChromaVectorIndex
from .websocket import ws_manager

setup_structured_logging(settings.log_level)
logger = logging.getLogger("homeagent")

__version__ = "0.3.0"

# Externe Dienste + Engine (eine Instanz pro Prozess)
kv_store = RedisKeyValueStore()
vector_index = ChromaVectorIndex()
inference = OllamaInference()
health_buffer = HealthSampleBuffer()
agent = HomeAgent(
    inference=inference,
    kv_store=kv_store,
    vector_index=vector_index,
    health=health_buffer,
)
agent.subscribe(ws_manager.broadcast)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup und Shutdown."""
    logger.info("=" * 50)
    logger.info(" HomeAgent v%s startet...", __version__)
    logger.info("=" * 50)
    await kv_store.initialize()
    await vector_index.initialize()
    await agent.initialize()
    logger.info(" [%s] redis", "OK" if kv_store.redis is not None else "!!")
    logger.info(" [%s] chromadb", "OK" if vector_index.collection is not None else "!!")
    logger.info(" HomeAgent bereit auf %s:%d", settings.agent_host, settings.agent_port)

    yield

    await ws_manager.broadcast("system", {"event": "shutdown"})
    await agent.close()
    await inference.close()
    await kv_store.close()
    logger.info("HomeAgent heruntergefahren.")


app = FastAPI(
    title="HomeAgent",
    description="Autonome Entscheidungs-Engine fuer das Zuhause",
    version=__version__,
    lifespan=lifespan,
)
app.add_middleware(RequestContextMiddleware)


# ----- Request Models -----

class TriggerRequest(BaseModel):
    action: str
    payload: dict = Field(default_factory=dict)


class HealthSampleRequest(BaseModel):
    kind: str
    value: float
    unit: str = ""
    timestamp: Optional[datetime] = None


# ----- API Endpoints -----

@app.get("/healthz")
async def healthz():
    return {
        "status": "ok",
        "version": __version__,
        "redis": kv_store.redis is not None,
        "chromadb": vector_index.collection is not None,
        "tasks": agent.task_registry.status(),
        "circuits": breakers.all_status(),
    }


@app.get("/api/agent/status")
async def status():
    """Engine-Status: laeuft gerade ein Zyklus, letzte Aktion, Intervall."""
    return agent.get_status()


@app.post("/api/agent/trigger")
async def trigger(request: TriggerRequest):
    """
    Aktion sofort ausfuehren.

    Beispiel:
    POST /api/agent/trigger
    {"action": "set_mood", "payload": {"mood": "relax"}}
    """
    try:
        result = await agent.trigger_action({"type": request.action, "payload": request.payload})
    except UnknownActionType as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return result.to_dict()


@app.get("/api/agent/memory")
async def memory():
    """Live-Patterns, Kurzzeit-Gedaechtnis und Schwellwerte."""
    return agent.memory.snapshot()


@app.post("/api/agent/health")
async def push_health_sample(request: HealthSampleRequest):
    """Health-Sample puffern, der naechste Zyklus uebernimmt es."""
    if not request.kind.strip():
        raise HTTPException(status_code=400, detail="Kein Sample-Typ angegeben")
    health_buffer.push(HealthSample(
        kind=request.kind.strip(),
        value=request.value,
        unit=request.unit,
        timestamp=request.timestamp or datetime.now(),
    ))
    return {"queued": len(health_buffer)}


@app.websocket("/api/agent/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket fuer Live-Updates.

    Events (Server -> Client):
    decision - Neue Entscheidung (akzeptiert oder Fallback)
    action_executed - Ergebnis einer Aktion
    critical_alert - Kritischer Sensor-Wert
    sensor_alert - Anomalie / Vorhersage
    task_suggestion - Aufgabenvorschlag
    cycle_complete - Zyklus beendet (Outcomes, Intervall)

    Events (Client -> Server):
    status - aktueller Status als Antwort
    """
    await ws_manager.connect(websocket)
    await ws_manager.send_personal(websocket, "status", agent.get_status())
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await ws_manager.send_personal(websocket, "error", {"message": "Invalid JSON"})
                continue
            if isinstance(message, dict) and message.get("event") == "status":
                await ws_manager.send_personal(websocket, "status", agent.get_status())
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)


def start():
    """Einstiegspunkt fuer den Server."""
    import uvicorn

    uvicorn.run(
        "homeagent.main:app",
        host=settings.agent_host,
        port=settings.agent_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    start()
