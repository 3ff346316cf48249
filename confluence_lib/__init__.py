"""Confluence MCP gateway: tool registry, stdio worker and HTTP/SSE bridge."""
