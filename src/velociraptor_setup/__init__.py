"""
Velociraptor Setup - deployment orchestration for the Velociraptor DFIR platform.

This package downloads the Velociraptor binary for the current platform,
generates its configuration, registers it as an operating system service,
opens firewall ports, and exposes lifecycle operations through a CLI and an
MCP server.
"""

__version__ = "0.1.0"
