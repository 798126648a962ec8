#!/usr/bin/env python3
"""
Standalone entry point for running from a checkout.

Usage:
    # Dashboard API (FastAPI)
    python run_server.py --port 3000

    # MCP tools over stdio (MCP inspector, assistants)
    python run_server.py --transport stdio

    # MCP tools over SSE
    python run_server.py --transport sse --port 8080
"""

import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from painel_compras.server import main

if __name__ == "__main__":
    main()
