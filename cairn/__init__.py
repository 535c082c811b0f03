"""cairn: an interactive CLI coding agent with a tool-calling conversation loop."""

from .conversation import Conversation, ToolCall
from .errors import AgentError, ConfigError
from .tools import ToolRegistry, build_registry

__all__ = [
    "AgentError",
    "ConfigError",
    "Conversation",
    "ToolCall",
    "ToolRegistry",
    "build_registry",
]
