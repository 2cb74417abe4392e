#!/usr/bin/env python3
"""
CQL-OMOP MCP Server Entry Point - stdio transport
"""

import sys
import logging
import asyncio

from cql_omop.server import create_omop_server
from cql_omop.config.settings import settings

logger = logging.getLogger(__name__)


def configure_logging():
    # stdout carries the MCP stdio protocol, so logs go to stderr
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )


async def main():
    """Main entry point for the MCP server."""
    logger.info("CQL-OMOP MCP Server starting via stdio...")
    logger.info(f"LLM Provider: {settings.llm_provider}")
    logger.info(f"Database: {settings.database_endpoint}/{settings.database_name}")

    server = create_omop_server()
    await server.run_stdio_async()


def run():
    configure_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Server stopped")
    except Exception as error:
        logger.error(f"Failed to start server: {error}")
        sys.exit(1)


if __name__ == "__main__":
    run()
