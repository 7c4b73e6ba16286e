"""
Tests fuer die FastAPI Endpoints (direkt aufgerufen, Engine gemockt).
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException, WebSocketDisconnect

import homeagent.main as main
from homeagent.action_executor import ExecutionResult
from homeagent.exceptions import ProviderError, ProviderUnavailable, UnknownActionType
from homeagent.models import ActionType
from homeagent.providers import HealthSampleBuffer
from homeagent.websocket import ConnectionManager


@pytest.fixture
def agent_mock(monkeypatch):
    mock = MagicMock()
    mock.get_status = MagicMock(return_value={"is_processing": False, "state": "idle"})
    mock.trigger_action = AsyncMock(
        return_value=ExecutionResult(ActionType.SET_MOOD, True, "Mood set to relax"),
    )
    mock.memory.snapshot = MagicMock(return_value={"patterns": []})
    monkeypatch.setattr(main, "agent", mock)
    return mock


class TestEndpoints:

    @pytest.mark.asyncio
    async def test_status(self, agent_mock):
        assert await main.status() == {"is_processing": False, "state": "idle"}

    @pytest.mark.asyncio
    async def test_trigger(self, agent_mock):
        result = await main.trigger(main.TriggerRequest(action="set_mood", payload={"mood": "relax"}))
        agent_mock.trigger_action.assert_awaited_once_with(
            {"type": "set_mood", "payload": {"mood": "relax"}},
        )
        assert result["message"] == "Mood set to relax"
        assert result["action"] == "set_mood"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,status", [
        (UnknownActionType("launch_rocket"), 400),
        (ProviderUnavailable("no hub"), 503),
        (ProviderError("hub crashed"), 502),
    ])
    async def test_trigger_errors(self, agent_mock, error, status):
        agent_mock.trigger_action.side_effect = error
        with pytest.raises(HTTPException) as exc_info:
            await main.trigger(main.TriggerRequest(action="x"))
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_memory(self, agent_mock):
        assert await main.memory() == {"patterns": []}

    @pytest.mark.asyncio
    async def test_push_health_sample(self, monkeypatch):
        buffer = HealthSampleBuffer()
        monkeypatch.setattr(main, "health_buffer", buffer)
        result = await main.push_health_sample(main.HealthSampleRequest(kind=" steps ", value=4200))
        assert result == {"queued": 1}
        assert (await buffer.pending_samples())[0].kind == "steps"

    @pytest.mark.asyncio
    async def test_push_health_sample_without_kind(self):
        with pytest.raises(HTTPException) as exc_info:
            await main.push_health_sample(main.HealthSampleRequest(kind=" ", value=1))
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_healthz(self, agent_mock):
        agent_mock.task_registry.status = MagicMock(return_value={"active": []})
        result = await main.healthz()
        assert result["status"] == "ok"
        assert result["version"] == main.__version__
        assert {c["name"] for c in result["circuits"]} >= {"ollama", "redis"}


class TestWebSocketEndpoint:
    """Tests fuer /api/agent/ws."""

    @pytest.mark.asyncio
    async def test_messages_and_disconnect(self, agent_mock, monkeypatch):
        manager = ConnectionManager()
        monkeypatch.setattr(main, "ws_manager", manager)
        ws = AsyncMock()
        ws.receive_text = AsyncMock(side_effect=[
            "kein json", json.dumps({"event": "status"}), WebSocketDisconnect(),
        ])

        await main.websocket_endpoint(ws)

        sent = [json.loads(call.args[0]) for call in ws.send_text.await_args_list]
        assert [m["event"] for m in sent] == ["status", "error", "status"]
        assert sent[1]["data"] == {"message": "Invalid JSON"}
        assert manager.active_connections == []
