"""
MCP entry point for velociraptor-setup.

Exposes deployment, config preview, health and service control as tools
over stdio. Logging goes to stderr because stdout carries the protocol.
"""

import logging
import sys

from mcp.server.fastmcp import FastMCP

from . import __version__

logger = logging.getLogger("velociraptor-setup")

mcp = FastMCP("velociraptor-setup")


def create_server() -> FastMCP:
    """Return the FastMCP instance with every tool registered."""
    # Tool modules register themselves with @mcp.tool() on import
    from . import tools  # noqa: F401

    return mcp


def main() -> None:
    from .cli import setup_logging

    setup_logging(verbose=True)
    logger.info(f"velociraptor-setup MCP server {__version__} starting on stdio")

    server = create_server()
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    except Exception as e:
        logger.error(f"MCP server stopped: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
