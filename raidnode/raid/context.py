"""Shared handle passed to every daemon loop."""
import asyncio
from dataclasses import dataclass, field
from typing import Optional

from ..config import PolicyCatalog, RaidConfig
from ..models import Statistics
from ..monitoring import RaidMetrics
from ..storage import FileSystem
from .codec import CodecRegistry
from .erasure import ErasureCodeRegistry


@dataclass
class RaidContext:
    config: RaidConfig
    catalog: PolicyCatalog
    codecs: CodecRegistry
    erasure_codes: ErasureCodeRegistry
    fs: FileSystem
    metrics: RaidMetrics
    statistics: Statistics = field(default_factory=Statistics)
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    parity_fs: Optional[FileSystem] = None

    @property
    def running(self) -> bool:
        return not self.stop_event.is_set()

    def get_parity_fs(self) -> FileSystem:
        return self.parity_fs or self.fs

    async def sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True if still running."""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        return self.running
