"""
Base class for filesystem implementations the RAID engine runs against.
"""

from abc import ABC, abstractmethod
from fnmatch import fnmatchcase
from typing import BinaryIO, List, Tuple
import logging

from ..errors import NotSupported
from ..models import BlockLocation, FileSnapshot
from .paths import join_path, normalize_path

logger = logging.getLogger(__name__)

_GLOB_CHARS = set("*?[")


class FileSystem(ABC):
    """Minimal filesystem surface used by the RAID engine.

    All methods are blocking; async callers go through run_in_executor.
    Missing paths raise FileNotFoundError.
    """

    scheme: str = ""

    @abstractmethod
    def get_file_status(self, path: str) -> FileSnapshot:
        """Return a fresh snapshot of path"""
        pass

    @abstractmethod
    def list_status(self, path: str) -> List[FileSnapshot]:
        """List a directory; a file lists as itself"""
        pass

    @abstractmethod
    def set_replication(self, path: str, replication: int) -> bool:
        """Change the replication of a file, False if refused"""
        pass

    @abstractmethod
    def set_times(self, path: str, mtime: int, atime: int = -1) -> None:
        """Set modification (and optionally access) time in milliseconds"""
        pass

    @abstractmethod
    def open(self, path: str) -> BinaryIO:
        """Open a file for reading"""
        pass

    @abstractmethod
    def create(self, path: str, overwrite: bool = True,
               replication: int = 0, block_size: int = 0) -> BinaryIO:
        """Create a file for writing, parents are created as needed"""
        pass

    @abstractmethod
    def delete(self, path: str, recursive: bool = False) -> bool:
        pass

    @abstractmethod
    def rename(self, src: str, dst: str) -> bool:
        pass

    @abstractmethod
    def mkdirs(self, path: str) -> bool:
        pass

    def exists(self, path: str) -> bool:
        try:
            self.get_file_status(path)
            return True
        except FileNotFoundError:
            return False

    def make_qualified(self, path: str) -> str:
        path = normalize_path(path)
        if self.scheme:
            return f"{self.scheme}://{path}"
        return path

    def get_file_block_locations(self, stat: FileSnapshot, start: int,
                                 length: int) -> List[BlockLocation]:
        """Block boundaries of stat overlapping [start, start + length)"""
        if stat.is_dir or stat.block_size <= 0 or length <= 0:
            return []
        end = min(stat.length, start + length)
        locations = []
        offset = (start // stat.block_size) * stat.block_size
        while offset < end:
            block_len = min(stat.block_size, stat.length - offset)
            locations.append(BlockLocation(offset=offset, length=block_len))
            offset += stat.block_size
        return locations

    def glob(self, pattern: str) -> List[FileSnapshot]:
        """Expand a glob expression one path segment at a time"""
        pattern = normalize_path(pattern)
        candidates = ["/"]
        for segment in [s for s in pattern.split("/") if s]:
            matched = []
            for parent in candidates:
                if _GLOB_CHARS.intersection(segment):
                    try:
                        children = self.list_status(parent)
                    except FileNotFoundError:
                        continue
                    matched.extend(
                        child.path for child in children
                        if fnmatchcase(child.name, segment)
                    )
                else:
                    matched.append(join_path(parent, segment))
            candidates = matched
        results = []
        for path in sorted(set(candidates)):
            try:
                results.append(self.get_file_status(path))
            except FileNotFoundError:
                continue
        return results

    def list_corrupt_file_blocks(self) -> List[Tuple[str, int]]:
        """(path, offset) pairs of blocks reported corrupt"""
        return []

    def list_decommissioning_file_blocks(self) -> List[Tuple[str, int]]:
        """(path, offset) pairs of blocks living only on decommissioning nodes"""
        return []

    def install_recovered_block(self, path: str, offset: int,
                                recovered_path: str) -> None:
        """Replace the block of path at offset with a reconstructed copy"""
        raise NotSupported(f"{type(self).__name__} cannot install recovered blocks")
