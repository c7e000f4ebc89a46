"""chronicle - control channel between the Chronicle desktop app and its MCP agent."""

__version__ = "0.5.0"
__logo__ = "📓"
