"""
Nexusflow MCP server package.
"""
