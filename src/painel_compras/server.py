"""
Painel de Compras - Main entry point.

Serves the dashboard HTTP API (FastAPI over uvicorn) or the MCP server
with the purchasing tools over stdio/SSE.
"""

import logging

import anyio
from mcp.server.fastmcp import FastMCP

from .config import get_config
from .tools import register_purchasing_tools

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create the FastMCP server instance
mcp = FastMCP("painel-compras")

_tools_registered = False


def create_server() -> FastMCP:
    """Create and configure the MCP server.

    Returns:
        Configured FastMCP Server instance.
    """
    global _tools_registered
    if not _tools_registered:
        logger.info("Registering purchasing tools...")
        register_purchasing_tools(mcp)
        _tools_registered = True

    logger.info("Painel de Compras MCP initialized")
    return mcp


def run(
    transport: str = "http",
    host: str = "0.0.0.0",
    port: int | None = None,
    reload: bool = False,
) -> None:
    """Entry point for running the server.

    Args:
        transport: "http" (dashboard API, default), "stdio" or "sse" (MCP).
        host: Host to bind to for http/sse.
        port: Port for http/sse (defaults to PORT, 3000).
        reload: Auto-reload on code changes (http only).
    """
    port = port or get_config().port

    if transport == "http":
        import uvicorn

        logger.info(f"Starting API on http://{host}:{port}")
        uvicorn.run(
            "painel_compras.api.app:create_app",
            factory=True,
            host=host,
            port=port,
            reload=reload,
        )
        return

    create_server()

    if transport == "sse":
        import uvicorn

        logger.info(f"Starting SSE server on http://{host}:{port}")
        logger.info("SSE endpoint: /sse")
        uvicorn.run(mcp.sse_app(), host=host, port=port)
    else:
        anyio.run(mcp.run_stdio_async)


def main():
    """CLI entry point with argument parsing."""
    import argparse

    parser = argparse.ArgumentParser(description="Painel de Compras server")
    parser.add_argument(
        "--transport",
        choices=["http", "stdio", "sse"],
        default="http",
        help="http serves the dashboard API; stdio/sse serve the MCP tools (default: http)",
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: $PORT or 3000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Reload on code changes (http only)",
    )

    args = parser.parse_args()
    run(transport=args.transport, host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
