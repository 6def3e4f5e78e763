#!/usr/bin/env python3
"""Launch the Cortex FastAPI server.

Usage:
    python -m cortex.scripts.run_server
"""

from __future__ import annotations

import logging

import uvicorn

from cortex.config.settings import LOG_LEVEL, SERVER_HOST, SERVER_PORT

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s  %(levelname)-7s  %(name)-22s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run_server")


def main():
    logger.info(f"Starting Cortex API on {SERVER_HOST}:{SERVER_PORT}")
    uvicorn.run(
        "cortex.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        log_level=LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
