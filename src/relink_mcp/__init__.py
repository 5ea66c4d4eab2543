"""ReLink MCP Server - Broken link replacement for AI Agents."""

from importlib.metadata import version

from relink_mcp.__main__ import _cli as main
from relink_mcp.server import mcp

__version__ = version("relink-mcp")
__all__ = ["mcp", "main", "__version__"]
