"""
Periodic collection of parity usage per codec.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict

from .context import RaidContext
from .purge import walk_parity_files

logger = logging.getLogger(__name__)


@dataclass
class CodecStats:
    parity_files: int = 0
    parity_bytes: int = 0


class StatisticsCollector:
    def __init__(self, context: RaidContext):
        self.context = context
        self._codec_stats: Dict[str, CodecStats] = {}

    def get_codec_stats(self) -> Dict[str, CodecStats]:
        return dict(self._codec_stats)

    def collect(self) -> Dict[str, CodecStats]:
        parity_fs = self.context.get_parity_fs()
        collected: Dict[str, CodecStats] = {}
        for codec in self.context.codecs.get_codecs():
            stats = CodecStats()
            for parity in walk_parity_files(parity_fs, codec.parity_directory):
                stats.parity_files += 1
                stats.parity_bytes += parity.length
            collected[codec.id] = stats
            self.context.metrics.parity_files.labels(codec.id).set(stats.parity_files)
            self.context.metrics.parity_bytes.labels(codec.id).set(stats.parity_bytes)

        for name, value in self.context.statistics.to_dict().items():
            self.context.metrics.statistics.labels(name).set(value)

        self._codec_stats = collected
        logger.debug(f"Collected parity statistics for {len(collected)} codecs")
        return collected

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        while self.context.running:
            try:
                await loop.run_in_executor(None, self.collect)
            except Exception:
                logger.error("Statistics collection failed", exc_info=True)
            if not await self.context.sleep(self.context.config.stats_interval):
                break
        logger.info("Leaving Statistics thread.")
