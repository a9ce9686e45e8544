"""MCP Tools for Velociraptor deployment.

Tools are registered via @mcp.tool() decorators when modules are imported.
"""

# Import tool modules to trigger registration via decorators
from . import deployment
from . import services

__all__ = [
    "deployment",
    "services",
]
