"""Clients package containing the LLM drivers and the tool backends."""

from __future__ import annotations

from .llm_client import create_driver
from .llm_driver_base import LLMDriver

__all__ = ["LLMDriver", "create_driver"]
