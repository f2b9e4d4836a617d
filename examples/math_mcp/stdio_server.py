import logging
import os
import sys

import anyio

from mcpwire import StdioTransport

from .math_mcp import build_math_server

# Configure logging globally for the demo server
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(os.environ.get("MCP_SERVER_LOG_FILE", "mcp_server.log")),
        logging.StreamHandler(sys.stderr),  # stdout is reserved for protocol frames
    ],
)
logger = logging.getLogger(__name__)


if __name__ == "__main__":
    logger.info("mcpwire: Started stdio server, listening for messages...")
    anyio.run(build_math_server().connect, StdioTransport())
