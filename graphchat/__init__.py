"""graphchat: tool-calling chat agent over Anthropic and OpenAI compatible APIs."""

__version__ = "0.1.0"
