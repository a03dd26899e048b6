"""
Trading Indicators MCP Server

Technical indicators served over MCP sessions and a direct HTTP API.
"""

__version__ = "1.0.0"
