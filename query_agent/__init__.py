"""
Query Agent
===========
Natural-language database queries answered by an LLM that drives remote
MCP database tools and replies with table or chart JSON.
"""

__version__ = "1.0.0"
