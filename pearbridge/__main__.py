#!/usr/bin/env python3
"""
Pear Touch Bridge (pear-bridge)

Touch Portal plugin process for Pear Desktop's API server.  Touch Portal
starts it; it connects back to Touch Portal on 127.0.0.1:12136, polls Pear
over HTTP and runs until SIGINT/SIGTERM or until Touch Portal closes the
plugin.
"""

import asyncio
import logging

from .bridge import PearBridge

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger('pear-bridge')


async def main():
    bridge = PearBridge()
    await bridge.run()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    run()
