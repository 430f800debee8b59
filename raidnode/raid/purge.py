"""
Parity purge: removes parity files that no longer protect anything.
"""
import asyncio
import logging
from typing import Iterator

from ..models import Codec, FileSnapshot
from ..storage import FileSystem
from .archive import source_dir_for
from .context import RaidContext
from .parity import get_archive_member_path, get_parity_file

logger = logging.getLogger(__name__)


def walk_parity_files(fs: FileSystem, root: str) -> Iterator[FileSnapshot]:
    """Yield the plain parity files under root, skipping archives"""
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            entries = fs.list_status(current)
        except FileNotFoundError:
            continue
        for entry in entries:
            if entry.is_dir:
                if not entry.path.endswith(".har"):
                    stack.append(entry.path)
            else:
                yield entry


class PurgeMonitor:
    """Deletes parity that is orphaned, superseded by a stronger codec, or archived"""

    def __init__(self, context: RaidContext):
        self.context = context

    def should_purge(self, codec: Codec, parity: FileSnapshot) -> bool:
        fs = self.context.fs
        src_path = source_dir_for(parity.path, codec.parity_directory)
        try:
            src_stat = fs.get_file_status(src_path)
        except FileNotFoundError:
            logger.info(f"Source {src_path} of parity {parity.path} no longer exists")
            return True
        if src_stat.is_dir:
            return True
        for other in self.context.codecs.get_codecs():
            if other.priority <= codec.priority:
                continue
            if get_parity_file(other, src_path, fs, self.context.get_parity_fs()) is not None:
                logger.info(
                    f"Parity {parity.path} is superseded by {other.id} parity for {src_path}"
                )
                return True
        if self.is_archived(parity, src_stat.modification_time):
            logger.info(f"Parity {parity.path} is already archived")
            return True
        return False

    def is_archived(self, parity: FileSnapshot, src_mtime: int) -> bool:
        """True if the archive next to parity holds a valid copy of it"""
        member = get_archive_member_path(parity.path)
        try:
            stat = self.context.get_parity_fs().get_file_status(member)
        except FileNotFoundError:
            return False
        return not stat.is_dir and stat.modification_time == src_mtime

    def purge_codec(self, codec: Codec) -> int:
        """Purge obsolete parity files of one codec, returns how many went"""
        parity_fs = self.context.get_parity_fs()
        purged = 0
        for parity in list(walk_parity_files(parity_fs, codec.parity_directory)):
            if not self.context.running:
                break
            try:
                if self.should_purge(codec, parity) and parity_fs.delete(parity.path):
                    purged += 1
                    self.context.metrics.purged_parity_files.labels(codec.id).inc()
            except OSError as e:
                logger.warning(f"Could not purge parity file {parity.path}: {str(e)}")
        if purged:
            logger.info(f"Purged {purged} parity files of codec {codec.id}")
        return purged

    def do_purge(self) -> int:
        total = 0
        for codec in self.context.codecs.get_codecs():
            total += self.purge_codec(codec)
        return total

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        while self.context.running:
            try:
                await loop.run_in_executor(None, self.do_purge)
            except Exception:
                logger.error("Parity purge failed", exc_info=True)
            finally:
                logger.info("Purge parity files thread continuing to run...")
            if not await self.context.sleep(self.context.config.purge_interval):
                break
        logger.info("Leaving Purge thread.")
