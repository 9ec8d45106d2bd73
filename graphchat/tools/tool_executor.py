"""
Tool Execution

Name-keyed dispatch from model tool calls to the external collaborators:
web search, the attached document, the note vault, the URL fetcher and the
knowledge graph backend.

Every invocation yields a ToolExecutionResult. Unknown tools, malformed
arguments, missing collaborators and collaborator exceptions all become
failed results so the surrounding tool loop can feed them back to the model.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from graphchat.chat.cancellation import CancellationToken
from graphchat.chat.chat_state import ChatState
from graphchat.chat.logging_utils import (
    log_tool_args_error,
    log_tool_arguments,
    log_tool_execution_error,
    log_tool_execution_start,
    log_tool_execution_success,
    log_tool_results,
)
from graphchat.chat.models import ToolCall, ToolExecutionResult
from graphchat.clients.fetch_client import WebFetchClient
from graphchat.clients.graph_client import GraphClient
from graphchat.clients.search_client import WebSearchClient
from graphchat.errors import ProtocolError, ToolExecutionError
from graphchat.tools.definitions import get_tool_definition
from graphchat.tools.host import VaultHost

logger = logging.getLogger(__name__)

TOOL_CANCELLED = "Cancelled before execution"

_JSON_TYPES: dict[str, type] = {"array": list, "object": dict}

ToolHandler = Callable[[dict[str, Any]], Awaitable[ToolExecutionResult]]


def _count(payload: Any, key: str) -> int:
    if isinstance(payload, dict):
        value = payload.get(key)
        if isinstance(value, list):
            return len(value)
        if isinstance(value, int):
            return value
    return 0


def _int_arg(args: dict[str, Any], key: str, default: int | None) -> int | None:
    value = args.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ToolExecutionError(f"{key} must be an integer, got {value!r}") from e


def _require(args: dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ToolExecutionError(f"Missing required argument: {key}")
    return value


class ToolExecutor:
    """Dispatches tool calls to collaborators and wraps every outcome."""

    def __init__(
        self,
        state: ChatState,
        search_client: WebSearchClient | None = None,
        graph_client: GraphClient | None = None,
        fetch_client: WebFetchClient | None = None,
        vault: VaultHost | None = None,
        chat_conf: dict[str, Any] | None = None,
    ) -> None:
        self.state = state
        self.search_client = search_client
        self.graph_client = graph_client
        self.fetch_client = fetch_client
        self.vault = vault
        self.chat_conf = chat_conf or {}

        self._handlers: dict[str, ToolHandler] = {
            "web_search": self._web_search,
            "update_chat_title": self._update_chat_title,
            "read_doc": self._read_doc,
            "vault_search": self._vault_search,
            "web_fetch": self._web_fetch,
            "open_note": self._open_note,
            "memory_create_entities": self._memory_create_entities,
            "memory_add_observations": self._memory_add_observations,
            "memory_create_relations": self._memory_create_relations,
            "memory_search_nodes": self._memory_search_nodes,
            "memory_semantic_search": self._memory_semantic_search,
            "memory_read_graph": self._memory_read_graph,
            "memory_open_nodes": self._memory_open_nodes,
            "memory_delete_entities": self._memory_delete_entities,
            "memory_delete_observations": self._memory_delete_observations,
            "memory_delete_relations": self._memory_delete_relations,
            "memory_generate_embeddings": self._memory_generate_embeddings,
            "memory_view_trash": self._memory_view_trash,
            "memory_restore_deleted": self._memory_restore_deleted,
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    # ---- dispatch ---------------------------------------------------------

    async def execute_tool_calls(
        self,
        calls: Sequence[ToolCall],
        token: CancellationToken | None = None,
    ) -> list[ToolExecutionResult]:
        """
        Execute tool calls sequentially, in order.

        Returns exactly one result per call. Once the token is cancelled the
        remaining calls are not run and get a cancelled result instead, so
        results stay positionally matched to calls.
        """
        logger.info("→ TOOL: executing %d tool calls", len(calls))
        results: list[ToolExecutionResult] = []

        for i, call in enumerate(calls):
            if token is not None and token.cancelled:
                logger.info("Skipping tool %s: generation was stopped", call.function.name)
                results.append(ToolExecutionResult(success=False, tool_name=call.function.name, error=TOOL_CANCELLED))
                continue

            log_tool_execution_start(call.function.name, i, len(calls))
            results.append(await self.execute_tool_call(call, f"call {i + 1}/{len(calls)}"))

        logger.info("← TOOL: completed all tool executions")
        return results

    async def execute_tool_call(self, call: ToolCall, context: str = "call") -> ToolExecutionResult:
        """Run one tool call; never raises."""
        tool_name = call.function.name
        handler = self._handlers.get(tool_name)
        if handler is None:
            log_tool_execution_error(tool_name, "unknown tool")
            return ToolExecutionResult(success=False, tool_name=tool_name, error=f"Unknown tool: {tool_name}")

        try:
            args = json.loads(call.function.arguments or "{}")
        except json.JSONDecodeError as e:
            log_tool_args_error(tool_name, e)
            return ToolExecutionResult(success=False, tool_name=tool_name, error=f"Malformed JSON arguments: {e}")

        if not isinstance(args, dict):
            return ToolExecutionResult(
                success=False,
                tool_name=tool_name,
                error=f"Arguments must be a JSON object, got {type(args).__name__}",
            )

        try:
            args = self.normalize_arguments(tool_name, args)
        except ProtocolError as e:
            log_tool_args_error(tool_name, e)
            return ToolExecutionResult(success=False, tool_name=tool_name, error=str(e))

        log_tool_arguments(
            tool_name,
            args,
            context,
            self.chat_conf.get("logging", {}).get("tool_arguments_truncate", 500),
        )

        try:
            result = await handler(args)
        except Exception as e:
            log_tool_execution_error(tool_name, str(e))
            return ToolExecutionResult(success=False, tool_name=tool_name, error=str(e) or type(e).__name__)

        log_tool_execution_success(tool_name, result.display_text)
        log_tool_results(tool_name, result.result, context)
        return result

    @staticmethod
    def normalize_arguments(tool_name: str, args: dict[str, Any]) -> dict[str, Any]:
        """
        Re-parse array/object arguments that arrived as JSON-encoded strings.

        Some providers serialize nested arguments twice. The tool's schema
        decides which properties are structured; anything else is untouched.
        """
        definition = get_tool_definition(tool_name)
        if definition is None:
            return args

        normalized = dict(args)
        for key, schema in definition.function.parameters.properties.items():
            value = normalized.get(key)
            expected = _JSON_TYPES.get(schema.get("type", ""))
            if expected is None or not isinstance(value, str):
                continue

            logger.warning("Argument %r of %s arrived as a JSON string, re-parsing", key, tool_name)
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError as e:
                raise ProtocolError(f"{key} must be a JSON {schema['type']}, got an unparseable string") from e
            if not isinstance(parsed, expected):
                raise ProtocolError(f"{key} must be a JSON {schema['type']}, got {type(parsed).__name__}")
            normalized[key] = parsed

        return normalized

    # ---- basic tools ------------------------------------------------------

    async def _web_search(self, args: dict[str, Any]) -> ToolExecutionResult:
        if self.search_client is None:
            raise ToolExecutionError("Web search client is not configured")

        response = await self.search_client.search(_require(args, "query"), page=_int_arg(args, "pageno", 1) or 1)
        return ToolExecutionResult(
            success=True,
            tool_name="web_search",
            result=response.model_dump(exclude_none=True),
            display_text=f"Found {response.number_of_results} search results",
        )

    async def _update_chat_title(self, args: dict[str, Any]) -> ToolExecutionResult:
        title = str(args.get("title") or "").strip()
        if not title:
            raise ToolExecutionError("Title cannot be empty")

        self.state.set_title(title)
        return ToolExecutionResult(
            success=True,
            tool_name="update_chat_title",
            result={"title": title},
            display_text=f"Title changed to: {title}",
        )

    async def _read_doc(self, args: dict[str, Any]) -> ToolExecutionResult:
        document = self.state.context_document
        if document is None:
            raise ToolExecutionError("No document is attached to this chat")
        if not document.content.strip():
            raise ToolExecutionError("Document content is empty")

        return ToolExecutionResult(
            success=True,
            tool_name="read_doc",
            result={"name": document.name, "content": document.content},
            display_text=f"Read document content ({len(document.content)} characters)",
        )

    async def _vault_search(self, args: dict[str, Any]) -> ToolExecutionResult:
        if self.vault is None:
            raise ToolExecutionError("Vault search is not available")

        query = _require(args, "query")
        result = await self.vault.search(query, _int_arg(args, "limit", 20) or 20)
        return ToolExecutionResult(
            success=True,
            tool_name="vault_search",
            result=result,
            display_text=f'Found {_count(result, "results")} results for "{query}"',
        )

    async def _web_fetch(self, args: dict[str, Any]) -> ToolExecutionResult:
        if self.fetch_client is None:
            raise ToolExecutionError("Web fetch is not available")

        return_format = args.get("returnFormat") or "markdown"
        if return_format not in ("markdown", "text"):
            raise ToolExecutionError(f"Unsupported returnFormat: {return_format}")

        page = await self.fetch_client.fetch(_require(args, "url"), return_format)
        return ToolExecutionResult(
            success=True,
            tool_name="web_fetch",
            result=page.model_dump(),
            display_text=f"Fetched page content ({len(page.content)} characters)",
        )

    async def _open_note(self, args: dict[str, Any]) -> ToolExecutionResult:
        if self.vault is None:
            raise ToolExecutionError("Opening notes is not available")

        path = _require(args, "path")
        await self.vault.open_note(path)
        return ToolExecutionResult(
            success=True,
            tool_name="open_note",
            result={"path": path},
            display_text=f"Opened note: {path}",
        )

    # ---- knowledge graph tools --------------------------------------------

    def _graph(self) -> GraphClient:
        if self.graph_client is None:
            raise ToolExecutionError("Memory server client is not configured")
        if not self.graph_client.is_connected():
            raise ToolExecutionError("Memory server is not connected")
        return self.graph_client

    async def _memory_create_entities(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().create_entities(_require(args, "entities"))
        created = result.get("new_entities") or [] if isinstance(result, dict) else []
        names = ", ".join(e.get("name", "") for e in created if isinstance(e, dict))
        return ToolExecutionResult(
            success=True,
            tool_name="memory_create_entities",
            result=result,
            display_text=f"Created {len(created)} entities: {names}",
        )

    async def _memory_add_observations(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().add_observations(_require(args, "observations"))
        return ToolExecutionResult(
            success=True,
            tool_name="memory_add_observations",
            result=result,
            display_text=f"Added observations to {_count(result, 'results')} entities",
        )

    async def _memory_create_relations(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().create_relations(
            _require(args, "relations"),
            auto_create_entities=bool(args.get("autoCreateEntities", False)),
        )
        return ToolExecutionResult(
            success=True,
            tool_name="memory_create_relations",
            result=result,
            display_text=f"Created {_count(result, 'relations')} relations",
        )

    async def _memory_search_nodes(self, args: dict[str, Any]) -> ToolExecutionResult:
        query = _require(args, "query")
        result = await self._graph().search_nodes(query)
        return ToolExecutionResult(
            success=True,
            tool_name="memory_search_nodes",
            result=result,
            display_text=f'Found {_count(result, "results")} nodes matching "{query}"',
        )

    async def _memory_semantic_search(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().semantic_search(_require(args, "query"), _int_arg(args, "limit", 10) or 10)
        return ToolExecutionResult(
            success=True,
            tool_name="memory_semantic_search",
            result=result,
            display_text=f"Semantic search found {_count(result, 'results')} related nodes",
        )

    async def _memory_read_graph(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().read_graph(_int_arg(args, "limit", None), _int_arg(args, "offset", 0) or 0)
        return ToolExecutionResult(
            success=True,
            tool_name="memory_read_graph",
            result=result,
            display_text=f"Read graph with {_count(result, 'results')} entities",
        )

    async def _memory_open_nodes(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().open_nodes(_require(args, "names"))
        return ToolExecutionResult(
            success=True,
            tool_name="memory_open_nodes",
            result=result,
            display_text=f"Retrieved {_count(result, 'results')} nodes",
        )

    async def _memory_delete_entities(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().delete_entities(_require(args, "entityNames"))
        return ToolExecutionResult(
            success=True,
            tool_name="memory_delete_entities",
            result=result,
            display_text=f"Deleted {_count(result, 'deleted_count')} entities",
        )

    async def _memory_delete_observations(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().delete_observations(_require(args, "deletions"))
        return ToolExecutionResult(
            success=True,
            tool_name="memory_delete_observations",
            result=result,
            display_text=f"Deleted {_count(result, 'deleted_count')} observations",
        )

    async def _memory_delete_relations(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().delete_relations(_require(args, "relations"))
        return ToolExecutionResult(
            success=True,
            tool_name="memory_delete_relations",
            result=result,
            display_text=f"Deleted {_count(result, 'deleted_count')} relations",
        )

    async def _memory_generate_embeddings(self, args: dict[str, Any]) -> ToolExecutionResult:
        limit = _int_arg(args, "limit", 20) or 20
        result = await self._graph().generate_embeddings(args.get("entityNames") or None, limit)
        return ToolExecutionResult(
            success=True,
            tool_name="memory_generate_embeddings",
            result=result,
            display_text="Generated embeddings",
        )

    async def _memory_view_trash(self, args: dict[str, Any]) -> ToolExecutionResult:
        result = await self._graph().view_trash(_int_arg(args, "limit", 20) or 20, _int_arg(args, "offset", 0) or 0)
        return ToolExecutionResult(
            success=True,
            tool_name="memory_view_trash",
            result=result,
            display_text=f"{_count(result, 'results')} items in the trash",
        )

    async def _memory_restore_deleted(self, args: dict[str, Any]) -> ToolExecutionResult:
        entity_names = args.get("entityNames") or None
        observations = args.get("observations") or None
        if not entity_names and not observations:
            raise ToolExecutionError("Nothing to restore: pass entityNames or observations")

        result = await self._graph().restore_deleted(entity_names, observations)
        return ToolExecutionResult(
            success=True,
            tool_name="memory_restore_deleted",
            result=result,
            display_text="Restored deleted items",
        )
