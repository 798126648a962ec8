"""
Painel de Compras - purchasing dashboard backend for the Sankhya ERP.

This package bridges browser sessions (signed tokens) to Sankhya ERP
sessions, serves the dashboard's JSON API and exposes purchasing tools
to AI assistants over MCP.
"""

__version__ = "0.1.0"
