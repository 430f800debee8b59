"""
Archive consolidator: packs cold parity directories into a single archive.
"""
import asyncio
import logging
import posixpath
import subprocess
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from ..errors import ArchiveFailure
from ..models import Codec, FileSnapshot
from ..storage import FileSystem
from ..storage.paths import HAR_SUFFIX, join_path, normalize_path, now_ms, random_long
from .context import RaidContext
from .parity import get_parity_file

logger = logging.getLogger(__name__)

MS_PER_DAY = 24 * 3600 * 1000


class Archiver(ABC):
    """Builds a Hadoop-style archive from a directory"""

    @abstractmethod
    def run(self, args: List[str]) -> int:
        """Run the archive tool and return its exit code"""
        pass


class SubprocessArchiver(Archiver):
    """Runs `<command> archive <args>` as an external process"""

    def __init__(self, command: str = "hadoop"):
        self.command = command

    def run(self, args: List[str]) -> int:
        cmd = [self.command, "archive"] + list(args)
        logger.info(f"Running archive command: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ArchiveFailure(f"Could not run {self.command}: {str(e)}")
        if result.returncode != 0:
            logger.error(f"Archive command exited with {result.returncode}: {result.stderr.strip()}")
        return result.returncode


def source_dir_for(parity_dir: str, parity_prefix: str) -> str:
    """Map a parity directory back onto the source directory it mirrors"""
    parity_dir = normalize_path(parity_dir)
    parity_prefix = normalize_path(parity_prefix)
    if parity_prefix != "/" and (parity_dir == parity_prefix
                                 or parity_dir.startswith(parity_prefix + "/")):
        parity_dir = parity_dir[len(parity_prefix):]
    return normalize_path(parity_dir)


class HarMonitor:
    """Periodically archives parity directories that have gone cold"""

    def __init__(self, context: RaidContext, archiver: Optional[Archiver] = None):
        self.context = context
        self.archiver = archiver or SubprocessArchiver(context.config.har_command)
        self.logger = logging.getLogger(__name__)

    @property
    def parity_fs(self) -> FileSystem:
        return self.context.get_parity_fs()

    def cutoff(self) -> int:
        return now_ms() - self.context.config.har_threshold_days * MS_PER_DAY

    def do_har(self) -> None:
        """One archive sweep over every codec, highest priority first"""
        self.logger.info("Started archive scan")
        cutoff = self.cutoff()
        for codec in self.context.codecs.get_codecs():
            if not self.context.running:
                return
            try:
                try:
                    dest_stat = self.parity_fs.get_file_status(codec.parity_directory)
                except FileNotFoundError:
                    continue
                self.logger.info(f"Haring parity files in {codec.parity_directory}")
                self.recurse_har(codec, dest_stat, codec.parity_directory, cutoff,
                                 codec.tmp_har_directory)
            except Exception:
                self.logger.warning("Ignoring Exception while haring", exc_info=True)

    def recurse_har(self, codec: Codec, dest: FileSnapshot, dest_prefix: str,
                    cutoff: int, tmp_har_path: str) -> None:
        if not dest.is_dir:
            return
        dest_path = dest.path

        # An archive is never archived again
        if dest_path.endswith(".har"):
            return
        if self.parity_fs.exists(join_path(dest_path, dest.name + HAR_SUFFIX)):
            return

        files = self.parity_fs.list_status(dest_path)
        should_har = len(files) > 0
        har_block_size = -1
        har_replication = -1
        for one in files:
            if one.is_dir:
                try:
                    self.recurse_har(codec, one, dest_prefix, cutoff, tmp_har_path)
                except ArchiveFailure as e:
                    self.logger.error(f"Failed to archive {one.path}: {e.message}")
                should_har = False
            elif one.modification_time > cutoff:
                if should_har:
                    self.logger.debug(
                        f"Cannot archive {dest_path} because {one.path} "
                        f"was modified after cutoff"
                    )
                    should_har = False
            else:
                if har_block_size == -1:
                    har_block_size = one.block_size
                elif har_block_size != one.block_size:
                    self.logger.info(
                        f"Block size of {one.path} is {one.block_size} which is "
                        f"different from {har_block_size}"
                    )
                    should_har = False
                if har_replication == -1:
                    har_replication = one.replication
                elif har_replication != one.replication:
                    self.logger.info(
                        f"Replication of {one.path} is {one.replication} which is "
                        f"different from {har_replication}"
                    )
                    should_har = False

        if should_har:
            should_har = self.covers_source_directory(codec, dest_path, dest_prefix)

        if should_har:
            self.logger.info(f"Archiving {dest_path} to {tmp_har_path}")
            self.single_har(codec, dest, tmp_har_path, har_block_size, har_replication)

    def covers_source_directory(self, codec: Codec, dest_path: str,
                                dest_prefix: str) -> bool:
        """Every entry of the mirrored source directory must have valid parity"""
        src_dir = source_dir_for(dest_path, dest_prefix)
        try:
            statuses = self.context.fs.list_status(src_dir)
        except FileNotFoundError:
            return True
        for status in statuses:
            if get_parity_file(codec, status.path, self.context.fs, self.parity_fs) is None:
                self.logger.debug(
                    f"Cannot archive {dest_path} because it doesn't contain parity "
                    f"file for {self.context.fs.make_qualified(status.path)}"
                )
                return False
        return True

    def single_har(self, codec: Codec, dest: FileSnapshot, tmp_har_path: str,
                   har_block_size: int, har_replication: int) -> None:
        qualified_path = self.parity_fs.make_qualified(dest.path)
        har_file_dst = dest.name + HAR_SUFFIX
        har_file_src = f"{dest.name}-{random_long()}-{HAR_SUFFIX}"

        args = [
            f"-Ddfs.replication={har_replication}",
            f"-Dhar.partfile.size={self.context.catalog.get_har_partfile_size()}",
            f"-Dhar.block.size={har_block_size}",
            "-archiveName", har_file_src,
            "-p", self.parity_fs.make_qualified("/"),
            dest.path[1:],
            tmp_har_path,
        ]
        tmp_har = posixpath.join(tmp_har_path, har_file_src)
        ret = 0
        try:
            ret = self.archiver.run(args)
            if ret == 0 and not self.parity_fs.rename(tmp_har,
                                                      join_path(dest.path, har_file_dst)):
                self.logger.info(
                    f"HAR rename didn't succeed from {tmp_har} to "
                    f"{qualified_path}/{har_file_dst}"
                )
                ret = -2
        except ArchiveFailure:
            raise
        except Exception as e:
            raise ArchiveFailure(f"Error while creating archive {ret}: {str(e)}", ret) from e
        finally:
            try:
                self.parity_fs.delete(tmp_har, True)
            except OSError as e:
                self.logger.warning(f"Could not delete temporary archive {tmp_har}: {str(e)}")

        if ret != 0:
            self.context.metrics.archives.labels(codec.id, "failed").inc()
            raise ArchiveFailure(f"Error while creating archive {ret}", ret)
        self.context.metrics.archives.labels(codec.id, "created").inc()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        prev_exec = 0.0
        while self.context.running:
            # The catalog may be reloaded by the trigger loop; use whatever is active
            wait = prev_exec + self.context.catalog.get_periodicity() - time.time()
            if wait > 0:
                if not await self.context.sleep(min(wait, self.context.config.trigger_sleep_time)):
                    break
                continue
            prev_exec = time.time()
            try:
                await loop.run_in_executor(None, self.do_har)
            except Exception:
                self.logger.error("Archive sweep failed", exc_info=True)
            finally:
                self.logger.info("Har parity files thread continuing to run...")
        self.logger.info("Leaving Har thread.")
