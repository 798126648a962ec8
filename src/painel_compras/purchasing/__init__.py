"""
Purchasing domain for Painel de Compras.

- status: STATUSPED labels and schedule status
- queries: SQL builders for the Sankhya schema
- orders: Purchase order reads, edits and creation
- replenishment: Stock coverage and stock-out risk
- divergences: Receiving divergences per supplier
- requests: Purchase requests and quotations
"""

from .rows import RecordNotFoundError

__all__ = ["RecordNotFoundError"]
