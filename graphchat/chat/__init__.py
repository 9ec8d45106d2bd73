"""
Chat Module

Conversation state, message models and the turn controller.
"""

from .chat_state import ChatState
from .models import AssistantMessage, ChatMessage, ChatResponse, ToolCall, ToolMessage, UserMessage

__all__ = ["AssistantMessage", "ChatMessage", "ChatResponse", "ChatState", "ToolCall", "ToolMessage", "UserMessage"]
