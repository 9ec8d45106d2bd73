"""
Main application entry point - WebSocket chat server with graceful shutdown handling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from typing import Any

from graphchat.clients.fetch_client import WebFetchClient
from graphchat.clients.graph_client import GraphClient
from graphchat.clients.search_client import WebSearchClient
from graphchat.config import Configuration
from graphchat.errors import ChatError
from graphchat.websocket_server import Collaborators, run_websocket_server

LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Module group -> parent loggers and known feature flags
MODULE_LOGGER_MAP: dict[str, dict[str, Any]] = {
    "chat": {
        "loggers": ["graphchat.chat"],
        "default_level": "INFO",
        "features": ["llm_replies", "tool_results"],
    },
    "clients": {
        "loggers": ["graphchat.clients"],
        "default_level": "INFO",
        "features": ["stream_events", "http_requests"],
    },
    "tools": {
        "loggers": ["graphchat.tools"],
        "default_level": "INFO",
        "features": ["tool_arguments", "tool_results"],
    },
}


def configure_logging(logging_config: dict[str, Any]) -> None:
    """
    Apply levels and feature flags from the logging section.

    Levels are set on the parent logger of each module group so children
    inherit them. Feature flags are cached on the logging module for
    should_log_feature.
    """
    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(LEVEL_MAP.get(global_level, logging.WARNING))

    if "format" in logging_config:
        for handler in logging.getLogger().handlers:
            if isinstance(handler, logging.StreamHandler):
                handler.setFormatter(logging.Formatter(logging_config["format"]))

    features: dict[str, dict[str, bool]] = {}
    for module_name, module_config in logging_config.get("modules", {}).items():
        if not isinstance(module_config, dict):
            continue

        mapping = MODULE_LOGGER_MAP.get(module_name, {})
        module_level = module_config.get("level", mapping.get("default_level", global_level))
        level_value = LEVEL_MAP.get(module_level, logging.WARNING)

        for logger_name in mapping.get("loggers", []):
            logging.getLogger(logger_name).setLevel(level_value)

        features[module_name] = dict(module_config.get("enable_features", {}))

    logging._module_features = features  # type: ignore[attr-defined]


def _on_logging_config_change(new_config: dict[str, Any]) -> None:
    """Re-apply logging when the configuration file changes."""
    try:
        logging_config = new_config.get("logging", {})
        if logging_config:
            configure_logging(logging_config)
            logging.info("🔄 Logging configuration updated in real-time")
    except (TypeError, ValueError, AttributeError) as e:
        logging.error(f"❌ Failed to update logging configuration: {e}")


logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


async def _connect_graph(config: Configuration) -> GraphClient | None:
    graph_config = config.get_graph_config()
    api_url = graph_config.get("api_url")
    if not api_url:
        logging.info("Knowledge graph backend not configured, memory tools will report it as unavailable")
        return None

    graph_client = GraphClient(timeout=float(graph_config.get("timeout_seconds", 30.0)))
    try:
        await graph_client.connect(api_url, graph_config.get("api_key", ""))
    except ChatError as e:
        logging.warning(f"Knowledge graph backend unavailable: {e}")
    return graph_client


async def main() -> None:
    """Main entry point - WebSocket chat server with graceful shutdown handling."""
    config = Configuration()

    configure_logging(config.get_logging_config())
    config.subscribe_to_changes(_on_logging_config_change)

    search_config = config.get_search_config()
    search_client = WebSearchClient.from_config(search_config) if search_config.get("url") else None
    fetch_client = WebFetchClient.from_config(config.get_fetch_config())
    graph_client = await _connect_graph(config)

    collaborators = Collaborators(
        search_client=search_client,
        graph_client=graph_client,
        fetch_client=fetch_client,
    )

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        """Handle shutdown signals gracefully."""
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    # Fail fast on a broken provider section before accepting connections
    config.get_llm_settings()

    try:
        await config.start_watching()

        server_task = asyncio.create_task(run_websocket_server(collaborators, config))

        done, pending = await asyncio.wait(
            [server_task, asyncio.create_task(shutdown_event.wait())],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        for task in done:
            if task == server_task:
                exception = task.exception()
                if exception is not None:
                    raise exception

    except KeyboardInterrupt:
        logging.info("Keyboard interrupt received, shutting down...")
    except Exception as e:
        logging.error(f"Application error: {e}")
        raise
    finally:
        await config.stop_watching()
        await collaborators.close()
        logging.info("Application shutdown complete")


def cli_main() -> None:
    """Synchronous CLI entrypoint that runs the async main."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
