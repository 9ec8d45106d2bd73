"""
WebSocket Server for graphchat

Thin communication layer between a frontend and the chat controller. Each
connection owns one chat session: its state, controller and driver. The
connected client also plays the host application, answering vault requests.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from graphchat.chat.chat_controller import ChatController
from graphchat.chat.chat_state import ChatState
from graphchat.chat.models import ChatMessage, ContextDocument, ToolExecutionResult
from graphchat.clients.fetch_client import WebFetchClient
from graphchat.clients.graph_client import GraphClient
from graphchat.clients.llm_client import create_driver
from graphchat.clients.llm_driver_base import LLMDriver
from graphchat.clients.search_client import WebSearchClient
from graphchat.config import Configuration
from graphchat.errors import ChatError, ToolExecutionError
from graphchat.tools.tool_executor import ToolExecutor

logger = logging.getLogger(__name__)

VAULT_REQUEST_TIMEOUT = 30.0
BUSY_NOTICE = "Please wait for the current reply to finish"

SendEvent = Callable[[ChatMessage], Awaitable[None]]
DriverFactory = Callable[[], LLMDriver]


class InboundMessage(BaseModel):
    """Client action with its optional arguments."""

    model_config = {"extra": "allow"}

    action: str
    text: str = ""
    name: str = ""
    content: str = ""
    title: str = ""
    id: str = ""
    result: dict[str, Any] | None = None
    error: str | None = None


class Collaborators:
    """External clients shared by all sessions."""

    def __init__(
        self,
        search_client: WebSearchClient | None = None,
        graph_client: GraphClient | None = None,
        fetch_client: WebFetchClient | None = None,
    ) -> None:
        self.search_client = search_client
        self.graph_client = graph_client
        self.fetch_client = fetch_client

    async def test_connections(self) -> dict[str, dict[str, Any]]:
        """Check each configured backend, reporting unconfigured ones as failures."""
        results: dict[str, dict[str, Any]] = {}

        if self.search_client is None:
            results["search"] = {"success": False, "message": "Web search is not configured"}
        else:
            success, message = await self.search_client.test_connection()
            results["search"] = {"success": success, "message": message}

        if self.graph_client is None or not self.graph_client.is_connected():
            results["graph"] = {"success": False, "message": "Knowledge graph backend is not connected"}
        else:
            try:
                status = await self.graph_client.get_status()
            except ChatError as e:
                results["graph"] = {"success": False, "message": f"Connection failed: {e}"}
            else:
                results["graph"] = {"success": True, "message": "✓ Knowledge graph connected", "status": status}

        return results

    async def close(self) -> None:
        for client in (self.search_client, self.graph_client, self.fetch_client):
            if client is not None:
                await client.close()


class WebSocketDisplay:
    """ChatDisplay that turns controller callbacks into outbound events."""

    def __init__(self, send: SendEvent) -> None:
        self._send = send

    async def on_text(self, delta: str) -> None:
        await self._send(ChatMessage(type="text", content=delta))

    async def on_message(self, content: str, metadata: dict[str, Any]) -> None:
        await self._send(ChatMessage(type="message", content=content, metadata=metadata))

    async def on_tool_status(self, result: ToolExecutionResult) -> None:
        await self._send(
            ChatMessage(
                type="tool_status",
                content=result.display_text if result.success else (result.error or ""),
                metadata={"tool_name": result.tool_name, "success": result.success},
            )
        )

    async def on_notice(self, message: str) -> None:
        await self._send(ChatMessage(type="notice", content=message))


class WebSocketVault:
    """VaultHost that relays vault operations to the connected client."""

    def __init__(self, send: SendEvent, timeout: float = VAULT_REQUEST_TIMEOUT) -> None:
        self._send = send
        self.timeout = timeout
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}

    async def _request(self, op: str, params: dict[str, Any]) -> dict[str, Any]:
        request_id = str(uuid.uuid4())
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._send(ChatMessage(type="vault_request", metadata={"id": request_id, "op": op, **params}))
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(f"Host did not answer the {op} request within {self.timeout:.0f}s") from e
        finally:
            self._pending.pop(request_id, None)

    def resolve(self, request_id: str, result: dict[str, Any] | None, error: str | None) -> bool:
        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.warning(f"Ignoring vault response for unknown request {request_id}")
            return False
        if error:
            future.set_exception(ToolExecutionError(error))
        else:
            future.set_result(result or {})
        return True

    def cancel_all(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

    async def search(self, query: str, limit: int) -> dict[str, Any]:
        return await self._request("search", {"query": query, "limit": limit})

    async def open_note(self, path: str) -> None:
        await self._request("open_note", {"path": path})


class ChatSession:
    """Everything that lives for one WebSocket connection."""

    def __init__(
        self,
        websocket: WebSocket,
        driver: LLMDriver,
        collaborators: Collaborators,
        chat_conf: dict[str, Any],
        web_search_default: bool,
    ) -> None:
        self.websocket = websocket
        self.driver = driver
        self.state = ChatState(web_search_enabled=web_search_default)
        self.vault = WebSocketVault(self.send)
        self.executor = ToolExecutor(
            self.state,
            search_client=collaborators.search_client,
            graph_client=collaborators.graph_client,
            fetch_client=collaborators.fetch_client,
            vault=self.vault,
            chat_conf=chat_conf,
        )
        self.controller = ChatController(
            self.state,
            driver,
            self.executor,
            display=WebSocketDisplay(self.send),
            chat_conf=chat_conf,
            initial_web_search_enabled=web_search_default,
        )
        self.turn_task: asyncio.Task[None] | None = None

    @property
    def is_busy(self) -> bool:
        """True from the moment a turn is scheduled until its task finishes."""
        return self.state.is_generating or (self.turn_task is not None and not self.turn_task.done())

    async def send(self, event: ChatMessage) -> None:
        await self.websocket.send_text(event.model_dump_json())

    async def send_state(self) -> None:
        document = self.state.context_document
        await self.send(
            ChatMessage(
                type="state",
                metadata={
                    "title": self.state.title,
                    "web_search_enabled": self.state.web_search_enabled,
                    "is_generating": self.state.is_generating,
                    "context_document": document.name if document else None,
                    "message_count": len(self.state.messages),
                },
            )
        )

    async def close(self) -> None:
        self.state.request_stop()
        self.vault.cancel_all()
        if self.turn_task is not None and not self.turn_task.done():
            self.turn_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.turn_task
        await self.driver.close()


class WebSocketServer:
    """
    WebSocket communication server.

    Handles connections, action routing and event delivery. All chat
    behaviour lives in ChatController.
    """

    def __init__(
        self,
        configuration: Configuration,
        collaborators: Collaborators | None = None,
        driver_factory: DriverFactory | None = None,
    ):
        self.configuration = configuration
        self.collaborators = collaborators or Collaborators()
        self.driver_factory = driver_factory or self._default_driver_factory
        self._status_driver: LLMDriver | None = None
        self.sessions: dict[WebSocket, ChatSession] = {}
        self.app = self._create_app()

    def _default_driver_factory(self) -> LLMDriver:
        return create_driver(
            self.configuration.get_llm_settings(),
            pool=self.configuration.get_connection_pool_config(),
        )

    @property
    def status_driver(self) -> LLMDriver:
        """Driver used by the HTTP status routes."""
        if self._status_driver is None:
            self._status_driver = self.driver_factory()
        return self._status_driver

    def _chat_conf(self) -> dict[str, Any]:
        chat_conf = dict(self.configuration.get_chat_service_config())
        chat_conf["max_tool_rounds"] = self.configuration.get_max_tool_rounds()
        return chat_conf

    def _create_app(self) -> FastAPI:
        """Create and configure FastAPI app."""
        app = FastAPI(title="graphchat WebSocket Server")

        websocket_config = self.configuration.get_websocket_config()
        app.add_middleware(
            CORSMiddleware,
            allow_origins=websocket_config.get("allow_origins", ["*"]),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @app.websocket("/ws/chat")
        async def websocket_endpoint(websocket: WebSocket):  # type: ignore
            await self._handle_websocket_connection(websocket)

        @app.get("/health")
        async def health():  # type: ignore
            return {"status": "healthy", "sessions": len(self.sessions)}

        @app.post("/llm/test")
        async def llm_test():  # type: ignore
            result = await self.status_driver.test_connection()
            return result.model_dump()

        @app.get("/llm/models")
        async def llm_models():  # type: ignore
            result = await self.status_driver.fetch_models_list()
            return result.model_dump()

        @app.post("/collaborators/test")
        async def collaborators_test():  # type: ignore
            return await self.collaborators.test_connections()

        return app

    async def _handle_websocket_connection(self, websocket: WebSocket):
        """Serve one connection until it disconnects."""
        logger.info(f"WebSocket connection attempt from {websocket.client}")
        await websocket.accept()

        session = ChatSession(
            websocket,
            self.driver_factory(),
            self.collaborators,
            self._chat_conf(),
            self.configuration.is_web_search_default_enabled(),
        )
        self.sessions[websocket] = session
        logger.info(f"WebSocket connection established. Total connections: {len(self.sessions)}")

        try:
            await session.send_state()
            while True:
                data = await websocket.receive_text()
                await self._dispatch(session, data)
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected")
        finally:
            await session.close()
            self.sessions.pop(websocket, None)
            logger.info(f"WebSocket connection closed. Total connections: {len(self.sessions)}")

    async def _dispatch(self, session: ChatSession, data: str) -> None:
        """Route one inbound action."""
        try:
            message = InboundMessage.model_validate(json.loads(data))
        except (json.JSONDecodeError, ValidationError) as e:
            await session.send(ChatMessage(type="notice", content=f"Invalid message format: {e}"))
            return

        action = message.action
        controller = session.controller

        if action == "send":
            if session.is_busy:
                if not await controller.stop():
                    await session.send(ChatMessage(type="notice", content=BUSY_NOTICE))
            else:
                session.turn_task = asyncio.create_task(self._run_turn(session, message.text))
        elif action == "stop":
            await controller.stop()
        elif action == "vault_response":
            session.vault.resolve(message.id, message.result, message.error)
        elif session.is_busy:
            await session.send(ChatMessage(type="notice", content=BUSY_NOTICE))
        elif action == "new_chat":
            await controller.new_chat()
            await session.send_state()
        elif action == "toggle_web_search":
            await controller.toggle_web_search()
            await session.send_state()
        elif action == "set_context_document":
            session.state.set_context_document(ContextDocument(name=message.name, content=message.content))
            await session.send_state()
        elif action == "clear_context_document":
            session.state.set_context_document(None)
            await session.send_state()
        elif action == "set_title":
            session.state.set_title(message.title)
            await session.send_state()
        else:
            logger.warning(f"Unknown action: {action}")
            await session.send(ChatMessage(type="notice", content=f"Unknown action '{action}'"))

    async def _run_turn(self, session: ChatSession, text: str) -> None:
        """Background task for one turn; inbound actions keep flowing meanwhile."""
        try:
            await session.controller.send_message(text)
            await session.send(ChatMessage(type="turn_complete"))
            await session.send_state()
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.info(f"Turn ended without a listener: {e}")

    async def start_server(self):
        """Start the WebSocket server and release clients on exit."""
        websocket_config = self.configuration.get_websocket_config()
        host = websocket_config.get("host", "127.0.0.1")
        port = websocket_config.get("port", 8000)

        logger.info(f"Starting WebSocket server on {host}:{port}")

        server_config = uvicorn.Config(self.app, host=host, port=port, log_level="info")
        server = uvicorn.Server(server_config)

        try:
            await server.serve()
        finally:
            logger.info("Shutting down WebSocket server and cleaning up resources...")
            for session in list(self.sessions.values()):
                await session.close()
            self.sessions.clear()
            if self._status_driver is not None:
                await self._status_driver.close()


async def run_websocket_server(collaborators: Collaborators, configuration: Configuration) -> None:
    """Run the WebSocket server until it stops."""
    server = WebSocketServer(configuration, collaborators)
    await server.start_server()
