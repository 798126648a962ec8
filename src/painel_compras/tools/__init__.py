"""
MCP tools for Painel de Compras.

- purchasing: Order status, open orders, replenishment risk, critical
  suppliers and receiving divergences
"""

from .purchasing import register_purchasing_tools

__all__ = ["register_purchasing_tools"]
