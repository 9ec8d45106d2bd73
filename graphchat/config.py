"""Configuration management for the chat core."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from collections.abc import Callable
from typing import Any, Literal, cast

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")
DEFAULT_RUNTIME_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "runtime_config.yaml")


class LLMSettings(BaseModel):
    """Resolved settings for the active LLM provider."""

    api_type: Literal["anthropic", "openai"] = "anthropic"
    base_url: str = ""
    api_key: str = ""
    model: str = ""
    max_tokens: int = 4096
    temperature: float | None = None
    system_rules: str = ""
    anthropic_version: str = "2023-06-01"

    # Unknown provider keys are kept so they can be passed through
    model_config = {"extra": "allow"}


class ConnectionPoolSettings(BaseModel):
    """HTTP client pool settings shared by every outbound client."""

    max_connections: int = Field(default=20, ge=1)
    max_keepalive_connections: int = Field(default=10, ge=0)
    keepalive_expiry_seconds: float = 30.0
    request_timeout_seconds: float = 120.0
    http2: bool = True


class Configuration:
    """YAML configuration with optional runtime overrides and change observers."""

    def __init__(
        self,
        config_path: str | None = None,
        runtime_config_path: str | None = None,
    ) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._runtime_config_path = runtime_config_path or DEFAULT_RUNTIME_CONFIG_PATH
        self._default_config = self._load_yaml_config(self._config_path)
        self._runtime_config_mtime: float | None = None
        self._current_config: dict[str, Any] = {}

        self._config_change_callbacks: list[Callable[[dict[str, Any]], None]] = []
        self._watch_task: asyncio.Task[None] | None = None

        self._reload_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(path: str) -> dict[str, Any]:
        """Load configuration from a YAML file."""
        with open(path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(f"Configuration file {path} must contain a dictionary")
            return cast(dict[str, Any], config)

    def _load_runtime_config(self) -> dict[str, Any]:
        """Load runtime overrides; an unreadable file counts as no overrides."""
        if not os.path.exists(self._runtime_config_path):
            return {}
        try:
            with open(self._runtime_config_path) as file:
                config = yaml.safe_load(file)
        except (yaml.YAMLError, OSError) as e:
            logging.warning(f"Ignoring unreadable runtime configuration: {e}")
            return {}
        if not isinstance(config, dict):
            return {}
        return {k: v for k, v in config.items() if not k.startswith("_runtime_config")}

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(cast(dict[str, Any], result[key]), cast(dict[str, Any], value))
            else:
                result[key] = value

        return result

    def _reload_config(self) -> bool:
        """Reload configuration if the runtime file changed.

        Returns:
            True if config was actually reloaded, False if no changes.
        """
        current_mtime = None
        if os.path.exists(self._runtime_config_path):
            current_mtime = os.path.getmtime(self._runtime_config_path)

        if current_mtime == self._runtime_config_mtime and self._current_config:
            return False

        old_config = self._current_config.copy()
        self._runtime_config_mtime = current_mtime
        self._current_config = self._deep_merge(self._default_config, self._load_runtime_config())

        if old_config and self._current_config != old_config:
            self._notify_config_change()
        return True

    def _get_current_config(self) -> dict[str, Any]:
        """Get current configuration (cached, no file system access)."""
        return self._current_config

    def _notify_config_change(self) -> None:
        """Notify all registered observers of configuration changes."""
        for callback in self._config_change_callbacks:
            try:
                callback(self._current_config.copy())
            except Exception as e:
                logging.error(f"Error in config change callback: {e}")

    def subscribe_to_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Subscribe to configuration change events.

        Args:
            callback: Function to call when config changes. Receives new
                config as argument.
        """
        if callback not in self._config_change_callbacks:
            self._config_change_callbacks.append(callback)

    def unsubscribe_from_changes(self, callback: Callable[[dict[str, Any]], None]) -> None:
        """Unsubscribe from configuration change events."""
        if callback in self._config_change_callbacks:
            self._config_change_callbacks.remove(callback)

    async def start_watching(self) -> None:
        """Start the async file watching task for automatic config updates."""
        if self._watch_task is not None:
            return

        self._watch_task = asyncio.create_task(self._watch_config_file())
        logging.info("Started watching runtime configuration file for changes")

    async def stop_watching(self) -> None:
        """Stop the async file watching task."""
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
            self._watch_task = None
            logging.info("Stopped watching runtime configuration file")

    async def _watch_config_file(self) -> None:
        """Async task that watches for config file changes."""
        while True:
            try:
                await asyncio.sleep(1)
                if self._reload_config():
                    logging.info("Runtime configuration file changed - config reloaded")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logging.error(f"Error watching config file: {e}")
                await asyncio.sleep(5)  # Back off on errors

    def _get_config_value(self, path: list[str], default: Any = None) -> Any:
        """Get a configuration value by key path."""
        current: Any = self._get_current_config()
        for key in path:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def reload_runtime_config(self) -> bool:
        """Manually reload runtime configuration.

        Returns:
            True if configuration was reloaded, False if no changes detected.
        """
        return self._reload_config()

    def save_runtime_config(self, config: dict[str, Any]) -> None:
        """Save overrides to the runtime config file and reload."""
        runtime_config = config.copy()
        runtime_config["_runtime_config"] = {
            "last_modified": time.time(),
            "default_config_path": os.path.basename(self._config_path),
        }

        with open(self._runtime_config_path, "w") as file:
            yaml.safe_dump(runtime_config, file, default_flow_style=False, indent=2)

        self._runtime_config_mtime = None
        self._reload_config()

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._get_current_config()

    @staticmethod
    def _resolve_secret(section: dict[str, Any], key: str, env_key: str) -> str:
        """Read a secret from the section itself, falling back to the environment."""
        value = section.get(key)
        if value:
            return str(value)
        env_name = section.get(env_key)
        if env_name:
            return os.getenv(env_name, "")
        return ""

    def get_llm_settings(self) -> LLMSettings:
        """Resolve settings for the active LLM provider.

        Missing endpoint, key or model are left empty here; drivers report
        them as configuration errors before any network call.
        """
        llm_config: dict[str, Any] = self._get_config_value(["llm"], {})
        active_provider = llm_config.get("active", "anthropic")
        providers: dict[str, Any] = llm_config.get("providers", {})

        if active_provider not in providers:
            raise ValueError(f"Active provider '{active_provider}' not found in providers config")

        provider_config = dict(providers[active_provider])
        api_key = self._resolve_secret(provider_config, "api_key", "api_key_env")
        provider_config.pop("api_key_env", None)
        provider_config["api_key"] = api_key
        provider_config.setdefault("system_rules", llm_config.get("system_rules") or "")
        return LLMSettings.model_validate({k: v for k, v in provider_config.items() if v is not None})

    def get_search_config(self) -> dict[str, Any]:
        """Get web search configuration with the resolved auth key."""
        search_config = dict(self._get_config_value(["search"], {}))
        search_config["auth_key"] = self._resolve_secret(search_config, "auth_key", "auth_key_env")
        return search_config

    def get_graph_config(self) -> dict[str, Any]:
        """Get knowledge graph backend configuration with the resolved API key."""
        graph_config = dict(self._get_config_value(["graph"], {}))
        graph_config["api_key"] = self._resolve_secret(graph_config, "api_key", "api_key_env")
        return graph_config

    def get_fetch_config(self) -> dict[str, Any]:
        """Get web fetch configuration."""
        return self._get_config_value(["fetch"], {})

    def get_websocket_config(self) -> dict[str, Any]:
        """Get WebSocket configuration."""
        return self._get_config_value(["chat", "websocket"], {})

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration."""
        return self._get_config_value(["logging"], {})

    def get_chat_service_config(self) -> dict[str, Any]:
        """Get chat service configuration."""
        return self._get_config_value(["chat", "service"], {})

    def get_connection_pool_config(self) -> ConnectionPoolSettings:
        """Get HTTP connection pool configuration."""
        return ConnectionPoolSettings.model_validate(self._get_config_value(["connection_pool"], {}))

    def get_max_tool_rounds(self) -> int:
        """Get the maximum number of tool rounds per turn.

        Returns:
            Maximum number of tool rounds (default: 8).
        """
        max_rounds = self.get_chat_service_config().get("max_tool_rounds", 8)

        if not isinstance(max_rounds, int) or isinstance(max_rounds, bool) or max_rounds < 1:
            raise ValueError("max_tool_rounds must be a positive integer")

        return max_rounds

    def is_web_search_default_enabled(self) -> bool:
        """Whether new chats start with web search on."""
        return bool(self._get_config_value(["search", "default_enabled"], False))
