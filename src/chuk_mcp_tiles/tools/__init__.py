"""MCP tool modules for chuk-mcp-tiles."""
