"""
Block integrity workers: rebuild corrupt blocks and copy blocks off
decommissioning nodes using parity.
"""
import asyncio
import logging
import time
from typing import Callable, List, Tuple

from ..errors import RaidError
from ..models import WorkerStatus
from .context import RaidContext
from .recovery import ParityFileRecovery

BlockLister = Callable[[], List[Tuple[str, int]]]


class Worker:
    """Fixes the blocks returned by a lister, one pass per interval"""

    def __init__(self, name: str, context: RaidContext, recovery: ParityFileRecovery,
                 lister: BlockLister):
        self.name = name
        self.context = context
        self.recovery = recovery
        self.lister = lister
        self.status = WorkerStatus()
        self.logger = logging.getLogger(f"{__name__}.{name}")

    def get_status(self) -> WorkerStatus:
        return self.status

    def fix_block(self, path: str, offset: int) -> bool:
        fs = self.context.fs
        recovery_fs = self.recovery.recovery_fs
        codec, recovered = self.recovery.recover_block(path, offset)
        try:
            fs.install_recovered_block(path, offset, recovered)
        finally:
            try:
                recovery_fs.delete(recovered)
            except OSError as e:
                self.logger.warning(f"Could not delete recovered block {recovered}: {str(e)}")
        self.logger.info(f"Fixed block at offset {offset} of {path} using codec {codec.id}")
        return True

    def do_fix(self) -> int:
        """One pass over the reported blocks. Returns the number fixed."""
        blocks = self.lister()
        if not blocks:
            return 0
        self.logger.info(f"{self.name}: {len(blocks)} blocks to fix")
        fixed = 0
        failed_files = []
        for path, offset in blocks:
            if not self.context.running:
                break
            try:
                self.fix_block(path, offset)
                fixed += 1
                self.status.files_fixed += 1
            except (RaidError, OSError) as e:
                self.status.files_failed += 1
                failed_files.append(path)
                self.logger.error(f"Could not fix block at offset {offset} of {path}: {str(e)}")
        self.status.highest_priority_files = failed_files
        self.status.last_update = time.time()
        return fixed

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        while self.context.running:
            try:
                await loop.run_in_executor(None, self.do_fix)
            except Exception:
                self.logger.error(f"{self.name} pass failed", exc_info=True)
            if not await self.context.sleep(self.context.config.blockfix_interval):
                break
        self.logger.info(f"Leaving {self.name} thread.")


class BlockIntegrityMonitor:
    """Owns the corruption fixer and the decommissioning copier"""

    def __init__(self, context: RaidContext, recovery: ParityFileRecovery):
        self.context = context
        self.recovery = recovery
        self.corruption_worker = Worker("CorruptionWorker", context, recovery,
                                        context.fs.list_corrupt_file_blocks)
        self.decommissioning_worker = Worker("DecommissioningWorker", context, recovery,
                                             context.fs.list_decommissioning_file_blocks)

    def get_corruption_monitor(self) -> Worker:
        return self.corruption_worker

    def get_decommissioning_monitor(self) -> Worker:
        return self.decommissioning_worker

    def get_aggregate_status(self) -> WorkerStatus:
        corrupt = self.corruption_worker.get_status()
        decom = self.decommissioning_worker.get_status()
        return WorkerStatus(
            files_fixed=corrupt.files_fixed + decom.files_fixed,
            files_failed=corrupt.files_failed + decom.files_failed,
            last_update=max(corrupt.last_update, decom.last_update),
            highest_priority_files=corrupt.highest_priority_files + decom.highest_priority_files,
        )
