"""
Tool definitions offered to the model.

Definitions are canonical OpenAI function tools. Drivers reshape copies for
their protocol; these objects are never mutated.
"""

from __future__ import annotations

from typing import Any

from graphchat.chat.models import ToolDefinition, ToolFunctionDefinition, ToolFunctionParameters


def _tool(
    name: str,
    description: str,
    properties: dict[str, Any] | None = None,
    required: list[str] | None = None,
) -> ToolDefinition:
    return ToolDefinition(
        function=ToolFunctionDefinition(
            name=name,
            description=description,
            parameters=ToolFunctionParameters(properties=properties or {}, required=required or []),
        )
    )


_STRING_LIST = {"type": "array", "items": {"type": "string"}}

_RELATION = {
    "type": "object",
    "properties": {
        "from": {"type": "string", "description": "Source entity name"},
        "to": {"type": "string", "description": "Target entity name"},
        "relationType": {
            "type": "string",
            "description": 'Relation type, e.g. "knows", "belongs_to", "influences", "located_in"',
        },
    },
    "required": ["from", "to", "relationType"],
}

_OBSERVATION = {
    "type": "object",
    "properties": {
        "entityName": {"type": "string", "description": "Name of an existing entity"},
        "content": {"type": "string", "description": "Observation text"},
    },
    "required": ["entityName", "content"],
}

# ==============================================================================
# BASIC TOOLS
# ==============================================================================

WEB_SEARCH = _tool(
    "web_search",
    "Search the web for up-to-date information. Use for recent news, fact checking and anything "
    "outside the notes.",
    {
        "query": {"type": "string", "description": "Search keywords or question"},
        "pageno": {"type": "integer", "description": "Result page number, default 1", "default": 1},
    },
    ["query"],
)

UPDATE_CHAT_TITLE = _tool(
    "update_chat_title",
    "Change the title of the current chat. Use when the user asks for it or the topic has clearly changed.",
    {"title": {"type": "string", "description": "New title; short, ideally under 20 characters"}},
    ["title"],
)

READ_DOC = _tool(
    "read_doc",
    'Read the full content of the document attached to this chat. Use when the user refers to "this '
    'document", "the current note" or similar.',
)

VAULT_SEARCH = _tool(
    "vault_search",
    "Search the whole note vault for keywords in note titles and content.",
    {
        "query": {"type": "string", "description": 'Search keywords, e.g. "python decorators"'},
        "limit": {"type": "integer", "description": "Maximum number of results, default 20", "default": 20},
    },
    ["query"],
)

WEB_FETCH = _tool(
    "web_fetch",
    "Fetch the content of a web page by URL, converted to markdown or plain text.",
    {
        "url": {"type": "string", "description": 'Page URL, e.g. "https://example.com/article"'},
        "returnFormat": {
            "type": "string",
            "description": "Return format: markdown (default) or text",
            "enum": ["markdown", "text"],
            "default": "markdown",
        },
    },
    ["url"],
)

OPEN_NOTE = _tool(
    "open_note",
    "Open a note in the host application to point the user at it.",
    {"path": {"type": "string", "description": 'Note path or file name, e.g. "folder/note.md"'}},
    ["path"],
)

# ==============================================================================
# KNOWLEDGE GRAPH TOOLS
# ==============================================================================

MEMORY_CREATE_ENTITIES = _tool(
    "memory_create_entities",
    "Create entities in the knowledge graph (people, concepts, events, places) with optional observations. "
    "Supports batches.",
    {
        "entities": {
            "type": "array",
            "description": "Entities to create",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Entity name"},
                    "entityType": {"type": "string", "description": 'Entity type, e.g. "person", "concept"'},
                    "observations": {**_STRING_LIST, "description": "Observations about the entity (optional)"},
                },
                "required": ["name", "entityType"],
            },
        }
    },
    ["entities"],
)

MEMORY_ADD_OBSERVATIONS = _tool(
    "memory_add_observations",
    "Add observations to existing entities. Supports batches.",
    {"observations": {"type": "array", "description": "Observations to add", "items": _OBSERVATION}},
    ["observations"],
)

MEMORY_CREATE_RELATIONS = _tool(
    "memory_create_relations",
    "Create relations between entities. Supports batches.",
    {
        "relations": {"type": "array", "description": "Relations to create", "items": _RELATION},
        "autoCreateEntities": {
            "type": "boolean",
            "description": "Create missing entities automatically (default false)",
            "default": False,
        },
    },
    ["relations"],
)

MEMORY_SEARCH_NODES = _tool(
    "memory_search_nodes",
    "Keyword search over entity names, types and observations. Space-separated keywords are ANDed.",
    {"query": {"type": "string", "description": "Search keywords"}},
    ["query"],
)

MEMORY_SEMANTIC_SEARCH = _tool(
    "memory_semantic_search",
    "Semantic similarity search over the knowledge graph using embeddings. Better for fuzzy or conceptual queries.",
    {
        "query": {"type": "string", "description": "Question, description or concept"},
        "limit": {"type": "integer", "description": "Maximum number of results, default 10", "default": 10},
    },
    ["query"],
)

MEMORY_READ_GRAPH = _tool(
    "memory_read_graph",
    "Read the knowledge graph page by page. Use the paging parameters to limit output size.",
    {
        "limit": {"type": "integer", "description": "Number of entities to return; 20 is a good size"},
        "offset": {"type": "integer", "description": "Paging offset, default 0", "default": 0},
    },
)

MEMORY_OPEN_NODES = _tool(
    "memory_open_nodes",
    "Fetch specific entities by exact name, including their relations.",
    {"names": {**_STRING_LIST, "description": "Entity names"}},
    ["names"],
)

MEMORY_DELETE_ENTITIES = _tool(
    "memory_delete_entities",
    "Soft-delete entities and their relations (moved to the trash, restorable).",
    {"entityNames": {**_STRING_LIST, "description": "Names of the entities to delete"}},
    ["entityNames"],
)

MEMORY_DELETE_OBSERVATIONS = _tool(
    "memory_delete_observations",
    "Soft-delete specific observations of entities (moved to the trash, restorable).",
    {
        "deletions": {
            "type": "array",
            "description": "Deletions to apply",
            "items": {
                "type": "object",
                "properties": {
                    "entityName": {"type": "string", "description": "Entity name"},
                    "observations": {**_STRING_LIST, "description": "Observation texts to delete"},
                },
                "required": ["entityName", "observations"],
            },
        }
    },
    ["deletions"],
)

MEMORY_DELETE_RELATIONS = _tool(
    "memory_delete_relations",
    "Soft-delete specific relations in the knowledge graph.",
    {"relations": {"type": "array", "description": "Relations to delete", "items": _RELATION}},
    ["relations"],
)

MEMORY_GENERATE_EMBEDDINGS = _tool(
    "memory_generate_embeddings",
    "Generate embeddings for semantic search, for the named entities or for entities that lack them.",
    {
        "entityNames": {**_STRING_LIST, "description": "Entities to embed; when empty, entities missing embeddings"},
        "limit": {
            "type": "integer",
            "description": "How many entities to process when entityNames is empty, default 20",
            "default": 20,
        },
    },
)

MEMORY_VIEW_TRASH = _tool(
    "memory_view_trash",
    "List soft-deleted entities and observations in the trash, page by page.",
    {
        "limit": {"type": "integer", "description": "Number of entries, default 20", "default": 20},
        "offset": {"type": "integer", "description": "Paging offset, default 0", "default": 0},
    },
)

MEMORY_RESTORE_DELETED = _tool(
    "memory_restore_deleted",
    "Restore soft-deleted entities or observations from the trash.",
    {
        "entityNames": {**_STRING_LIST, "description": "Entities to restore (optional)"},
        "observations": {"type": "array", "description": "Observations to restore (optional)", "items": _OBSERVATION},
    },
)

BASIC_TOOLS = [UPDATE_CHAT_TITLE, VAULT_SEARCH, WEB_FETCH, OPEN_NOTE]

MEMORY_TOOLS = [
    MEMORY_CREATE_ENTITIES,
    MEMORY_ADD_OBSERVATIONS,
    MEMORY_CREATE_RELATIONS,
    MEMORY_SEARCH_NODES,
    MEMORY_SEMANTIC_SEARCH,
    MEMORY_READ_GRAPH,
    MEMORY_OPEN_NODES,
    MEMORY_DELETE_ENTITIES,
    MEMORY_DELETE_OBSERVATIONS,
    MEMORY_DELETE_RELATIONS,
    MEMORY_GENERATE_EMBEDDINGS,
    MEMORY_VIEW_TRASH,
    MEMORY_RESTORE_DELETED,
]

ALL_TOOLS = [WEB_SEARCH, READ_DOC, *BASIC_TOOLS, *MEMORY_TOOLS]

TOOLS_BY_NAME: dict[str, ToolDefinition] = {tool.name: tool for tool in ALL_TOOLS}


def get_available_tools(web_search_enabled: bool, has_context_document: bool) -> list[ToolDefinition]:
    """Tool set for one turn, derived from the session's current flags."""
    tools: list[ToolDefinition] = []
    if web_search_enabled:
        tools.append(WEB_SEARCH)
    if has_context_document:
        tools.append(READ_DOC)
    tools.extend(BASIC_TOOLS)
    tools.extend(MEMORY_TOOLS)
    return tools


def get_tool_definition(name: str) -> ToolDefinition | None:
    return TOOLS_BY_NAME.get(name)
