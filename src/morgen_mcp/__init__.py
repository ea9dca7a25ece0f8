"""Morgen calendar adapter exposing calendar queries as MCP tools."""

__version__ = "0.1.0"
