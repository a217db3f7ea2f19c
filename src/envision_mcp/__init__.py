"""Link protocol core and MCP server for Envision optical devices."""

__version__ = "0.1.0"
