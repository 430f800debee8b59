import asyncio
import logging
import signal

from raidnode.config import load_raid_config
from raidnode.raid_node import create_raid_node

logger = logging.getLogger("raidnode")


async def main():
    config = load_raid_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    node = create_raid_node(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, node.stop)

    await node.start()
    logger.info(f"RaidNode ({config.raidnode_classname}) started")
    await node.join()


if __name__ == '__main__':
    asyncio.run(main())
