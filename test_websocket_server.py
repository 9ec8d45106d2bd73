#!/usr/bin/env python3
"""
Tests for the WebSocket surface: HTTP status routes, actions and event flow.
"""

import asyncio
import json
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import yaml
from fastapi.testclient import TestClient

from graphchat.chat.models import (
    ChatResponse,
    ConnectionTestResult,
    FunctionCall,
    ModelListResult,
    StreamChunk,
    ToolCall,
)
from graphchat.clients.graph_client import GraphClient
from graphchat.clients.search_client import WebSearchClient
from graphchat.config import Configuration
from graphchat.errors import TransportError
from graphchat.websocket_server import BUSY_NOTICE, ChatSession, Collaborators, WebSocketServer

CONFIG = {
    "llm": {"active": "test", "providers": {"test": {"api_type": "openai", "base_url": "http://llm", "model": "m"}}},
    "search": {"default_enabled": False},
    "chat": {"service": {"max_tool_rounds": 4}, "websocket": {"allow_origins": ["*"]}},
    "logging": {"level": "INFO"},
}


def _fake_driver() -> MagicMock:
    driver = MagicMock()
    driver.settings.model = "m"
    driver.send_message_stream = AsyncMock()
    driver.send_message = AsyncMock()
    driver.close = AsyncMock()
    driver.test_connection = AsyncMock(
        return_value=ConnectionTestResult(success=True, message="✓ OpenAI API connected, model m is available")
    )
    driver.fetch_models_list = AsyncMock(return_value=ModelListResult(success=True, models=["m"], source="live"))
    return driver


def _server(driver: MagicMock, directory: str, collaborators: Collaborators | None = None) -> WebSocketServer:
    config_path = Path(directory) / "config.yaml"
    config_path.write_text(yaml.safe_dump(CONFIG))
    configuration = Configuration(str(config_path), str(Path(directory) / "runtime_config.yaml"))
    return WebSocketServer(configuration, collaborators, driver_factory=lambda: driver)


def _receive_until(ws, event_type: str) -> list[dict]:
    events = []
    while True:
        event = ws.receive_json()
        events.append(event)
        if event["type"] == event_type:
            return events


def test_http_routes():
    driver = _fake_driver()
    with tempfile.TemporaryDirectory() as directory:
        client = TestClient(_server(driver, directory).app)

        assert client.get("/health").json()["status"] == "healthy"
        assert client.post("/llm/test").json()["success"] is True
        assert client.get("/llm/models").json() == {"success": True, "models": ["m"], "source": "live", "error": None}


def test_collaborator_connection_report():
    search = MagicMock(spec=WebSearchClient)
    search.test_connection = AsyncMock(return_value=(True, "✓ Web search connected, 3 test results"))
    graph = MagicMock(spec=GraphClient)
    graph.is_connected.return_value = True
    graph.get_status = AsyncMock(side_effect=TransportError("down", 503))

    with tempfile.TemporaryDirectory() as directory:
        server = _server(_fake_driver(), directory, Collaborators(search_client=search, graph_client=graph))
        report = TestClient(server.app).post("/collaborators/test").json()

    assert report["search"] == {"success": True, "message": "✓ Web search connected, 3 test results"}
    assert report["graph"] == {"success": False, "message": "Connection failed: HTTP 503: down"}

    with tempfile.TemporaryDirectory() as directory:
        report = TestClient(_server(_fake_driver(), directory).app).post("/collaborators/test").json()
    assert not report["search"]["success"]
    assert not report["graph"]["success"]


def test_chat_turn_streams_events():
    driver = _fake_driver()

    async def fake_stream(messages, tools, on_chunk):
        await on_chunk(StreamChunk(type="text", content="Hel"))
        await on_chunk(StreamChunk(type="text", content="lo"))
        return ChatResponse(success=True, message="Hello")

    driver.send_message_stream.side_effect = fake_stream

    with tempfile.TemporaryDirectory() as directory:
        client = TestClient(_server(driver, directory).app)
        with client.websocket_connect("/ws/chat") as ws:
            initial = ws.receive_json()
            assert initial["type"] == "state"
            assert initial["metadata"]["title"] == "New chat"

            ws.send_text(json.dumps({"action": "send", "text": "Hi"}))
            events = _receive_until(ws, "turn_complete")
            final_state = ws.receive_json()

    assert [e["content"] for e in events if e["type"] == "text"] == ["Hel", "lo"]
    assert [e["content"] for e in events if e["type"] == "message"] == ["Hello"]
    assert final_state["type"] == "state"
    assert final_state["metadata"]["message_count"] == 2
    assert final_state["metadata"]["is_generating"] is False


def test_session_actions_update_state():
    driver = _fake_driver()
    with tempfile.TemporaryDirectory() as directory:
        client = TestClient(_server(driver, directory).app)
        with client.websocket_connect("/ws/chat") as ws:
            ws.receive_json()

            ws.send_text(json.dumps({"action": "toggle_web_search"}))
            assert ws.receive_json() == {"type": "notice", "content": "Web search enabled", "metadata": {}}
            assert ws.receive_json()["metadata"]["web_search_enabled"] is True

            ws.send_text(json.dumps({"action": "set_context_document", "name": "plan.md", "content": "Day 1"}))
            assert ws.receive_json()["metadata"]["context_document"] == "plan.md"

            ws.send_text(json.dumps({"action": "set_title", "title": "Trip"}))
            assert ws.receive_json()["metadata"]["title"] == "Trip"

            ws.send_text(json.dumps({"action": "clear_context_document"}))
            assert ws.receive_json()["metadata"]["context_document"] is None

            ws.send_text(json.dumps({"action": "new_chat"}))
            assert ws.receive_json()["content"] == "New chat created"
            state = ws.receive_json()["metadata"]
            assert state["title"] == "New chat"
            assert state["web_search_enabled"] is False

            ws.send_text(json.dumps({"action": "dance"}))
            assert ws.receive_json()["content"] == "Unknown action 'dance'"

            ws.send_text("not json")
            assert ws.receive_json()["content"].startswith("Invalid message format")


def test_vault_requests_are_relayed_to_client():
    driver = _fake_driver()
    call = ToolCall(id="call_1", function=FunctionCall(name="vault_search", arguments='{"query": "rome"}'))
    driver.send_message_stream.side_effect = None
    driver.send_message_stream.return_value = ChatResponse(success=True, tool_calls=[call])
    driver.send_message.return_value = ChatResponse(success=True, message="Found your Rome note.")

    with tempfile.TemporaryDirectory() as directory:
        client = TestClient(_server(driver, directory).app)
        with client.websocket_connect("/ws/chat") as ws:
            ws.receive_json()
            ws.send_text(json.dumps({"action": "send", "text": "Find my Rome notes"}))

            request = _receive_until(ws, "vault_request")[-1]
            assert request["metadata"]["op"] == "search"
            assert request["metadata"]["query"] == "rome"

            ws.send_text(
                json.dumps(
                    {
                        "action": "vault_response",
                        "id": request["metadata"]["id"],
                        "result": {"results": [{"path": "travel/rome.md"}]},
                    }
                )
            )
            events = _receive_until(ws, "turn_complete")

    statuses = [e for e in events if e["type"] == "tool_status"]
    assert statuses[0]["content"] == 'Found 1 results for "rome"'
    assert statuses[0]["metadata"] == {"tool_name": "vault_search", "success": True}
    assert [e["content"] for e in events if e["type"] == "message"] == ["Found your Rome note."]


def test_second_send_before_turn_starts_does_not_spawn_another_turn():
    driver = _fake_driver()
    driver.send_message_stream.return_value = ChatResponse(success=True, message="Done")
    websocket = MagicMock()
    websocket.send_text = AsyncMock()

    with tempfile.TemporaryDirectory() as directory:
        server = _server(driver, directory)

        async def run():
            session = ChatSession(websocket, driver, server.collaborators, server._chat_conf(), False)
            await server._dispatch(session, json.dumps({"action": "send", "text": "one"}))
            first = session.turn_task
            assert session.is_busy
            # The first task has not run yet, so nothing is generating
            assert not session.state.is_generating
            await server._dispatch(session, json.dumps({"action": "send", "text": "two"}))
            await server._dispatch(session, json.dumps({"action": "new_chat"}))
            assert session.turn_task is first
            await first
            assert not session.is_busy
            return session

        session = asyncio.run(run())

    events = [json.loads(c.args[0]) for c in websocket.send_text.await_args_list]
    assert driver.send_message_stream.await_count == 1
    assert [m.content for m in session.state.messages] == ["one", "Done"]
    assert [e["content"] for e in events if e["type"] == "notice"] == [BUSY_NOTICE, BUSY_NOTICE]


if __name__ == "__main__":
    test_http_routes()
    test_collaborator_connection_report()
    test_chat_turn_streams_events()
    test_session_actions_update_state()
    test_vault_requests_are_relayed_to_client()
    test_second_send_before_turn_starts_does_not_spawn_another_turn()
    print("✅ All WebSocket server tests passed!")
