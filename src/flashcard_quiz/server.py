"""MCP Server — take flashcard tests through tools.

Registers the test-taking tools on a FastMCP server:
- start_test / get_test             (load, resume, inspect)
- answer_question / finish_test     (answering and scoring)
- restart_test                      (retake with fresh questions)
- update_test_settings              (mode, choice shuffling, feedback timing)
- randomize_question_types          (mixed mode re-flip)

Progress is read from and saved to the flashcard API at FLASHCARD_API_URL.
"""

from __future__ import annotations

import argparse
import logging

from mcp.server.fastmcp import FastMCP

from flashcard_quiz.sync import SessionRegistry
from flashcard_quiz.tools import session as session_tools

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

mcp = FastMCP("Flashcard Quiz")

# Shared registry of active tests used by the tools
registry = SessionRegistry()
session_tools.register(mcp, registry)


def main():
    """Run the MCP server."""
    parser = argparse.ArgumentParser(
        description="Flashcard Quiz MCP Server",
    )
    parser.add_argument(
        "--sse",
        type=int,
        metavar="PORT",
        help="Run with SSE transport on specified port",
    )
    parser.add_argument(
        "--http",
        type=int,
        metavar="PORT",
        help="Run with Streamable HTTP transport on specified port",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Determine transport
    if args.sse:
        transport = "sse"
        port = args.sse
    elif args.http:
        transport = "http"
        port = args.http
    else:
        transport = "stdio"
        port = None

    logger.info("Starting Flashcard Quiz MCP server (transport: %s)...", transport)

    if transport == "stdio":
        mcp.run(transport="stdio")
    elif transport == "sse":
        mcp.settings.host = "0.0.0.0"
        mcp.settings.port = port
        mcp.run(transport="sse")
    elif transport == "http":
        mcp.settings.host = "0.0.0.0"
        mcp.settings.port = port
        mcp.run(transport="streamable-http")


if __name__ == "__main__":
    main()
