"""Tools package for the tubescope MCP server.

Tool functions live in ``tubescope.server``; the modules here hold the
transcript pipeline and retrieval layer those tools call into.
"""
