"""Driver and MCP server for LEGO Mindstorms EV3 bricks."""

__version__ = "0.1.0"
