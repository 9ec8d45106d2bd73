"""Driver selection for the configured LLM protocol."""

from __future__ import annotations

import logging

import httpx

from graphchat.clients.anthropic_driver import AnthropicDriver
from graphchat.clients.llm_driver_base import LLMDriver
from graphchat.clients.openai_driver import OpenAIDriver
from graphchat.config import ConnectionPoolSettings, LLMSettings

logger = logging.getLogger(__name__)

DRIVERS: dict[str, type[LLMDriver]] = {
    "anthropic": AnthropicDriver,
    "openai": OpenAIDriver,
}


def create_driver(
    settings: LLMSettings,
    pool: ConnectionPoolSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LLMDriver:
    """Pick the protocol variant once, from settings.api_type."""
    driver_cls = DRIVERS.get(settings.api_type)
    if driver_cls is None:
        raise ValueError(f"Unsupported LLM api_type '{settings.api_type}'")

    logger.info(f"LLM driver initialized: {driver_cls.provider_label}, model: {settings.model or 'unset'}")
    return driver_cls(settings, pool=pool, transport=transport)
