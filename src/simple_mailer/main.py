"""Console entrypoint for the simple mailer MCP server."""

import asyncio
import logging
import sys

from .server import _run


def main() -> None:
    """Start the MCP stdio server."""
    # stdout carries the MCP stream
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    asyncio.run(_run())
