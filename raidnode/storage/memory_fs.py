"""In-memory filesystem with HDFS-like replication and block metadata."""

import io
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from ..models import FileSnapshot
from .filesystem import FileSystem
from .paths import normalize_path, now_ms

DEFAULT_BLOCK_SIZE = 64 * 1024 * 1024
DEFAULT_REPLICATION = 3


@dataclass
class _MemFile:
    data: bytearray
    replication: int
    block_size: int
    mtime: int


class _CommitOnClose(io.BytesIO):
    """Write buffer that lands in the filesystem when closed"""

    def __init__(self, fs: "MemoryFileSystem", path: str,
                 replication: int, block_size: int):
        super().__init__()
        self._fs = fs
        self._path = path
        self._replication = replication
        self._block_size = block_size

    def close(self):
        if not self.closed:
            self._fs.write_file(
                self._path, self.getvalue(),
                replication=self._replication, block_size=self._block_size
            )
        super().close()


class MemoryFileSystem(FileSystem):
    scheme = "mem"

    def __init__(self, default_block_size: int = DEFAULT_BLOCK_SIZE,
                 default_replication: int = DEFAULT_REPLICATION):
        self.default_block_size = default_block_size
        self.default_replication = default_replication
        self.files: Dict[str, _MemFile] = {}
        self.directories: Dict[str, int] = {"/": now_ms()}
        self.corrupt_blocks: Set[Tuple[str, int]] = set()
        self.decommissioning_blocks: Set[Tuple[str, int]] = set()
        self._lock = threading.RLock()

    def _parent(self, path: str) -> str:
        return path.rsplit("/", 1)[0] or "/"

    def _snapshot(self, path: str) -> FileSnapshot:
        if path in self.files:
            f = self.files[path]
            return FileSnapshot(
                path=path,
                length=len(f.data),
                block_size=f.block_size,
                replication=f.replication,
                modification_time=f.mtime,
            )
        if path in self.directories:
            return FileSnapshot(
                path=path, modification_time=self.directories[path], is_dir=True
            )
        raise FileNotFoundError(f"File does not exist: {path}")

    def write_file(self, path: str, data: bytes = b"", replication: int = 0,
                   block_size: int = 0, mtime: Optional[int] = None) -> FileSnapshot:
        """Create or replace a file in one call"""
        path = normalize_path(path)
        with self._lock:
            if path in self.directories:
                raise IsADirectoryError(path)
            self.mkdirs(self._parent(path))
            self.files[path] = _MemFile(
                data=bytearray(data),
                replication=replication or self.default_replication,
                block_size=block_size or self.default_block_size,
                mtime=now_ms() if mtime is None else mtime,
            )
            return self._snapshot(path)

    def read_file(self, path: str) -> bytes:
        path = normalize_path(path)
        with self._lock:
            if path not in self.files:
                raise FileNotFoundError(f"File does not exist: {path}")
            return bytes(self.files[path].data)

    def get_file_status(self, path: str) -> FileSnapshot:
        with self._lock:
            return self._snapshot(normalize_path(path))

    def list_status(self, path: str) -> List[FileSnapshot]:
        path = normalize_path(path)
        with self._lock:
            if path in self.files:
                return [self._snapshot(path)]
            if path not in self.directories:
                raise FileNotFoundError(f"Directory does not exist: {path}")
            children = [
                p for p in list(self.files) + list(self.directories)
                if p != path and self._parent(p) == path
            ]
            return [self._snapshot(p) for p in sorted(children)]

    def set_replication(self, path: str, replication: int) -> bool:
        path = normalize_path(path)
        with self._lock:
            if path not in self.files:
                return False
            self.files[path].replication = replication
            return True

    def set_times(self, path: str, mtime: int, atime: int = -1) -> None:
        path = normalize_path(path)
        with self._lock:
            if path in self.files:
                if mtime >= 0:
                    self.files[path].mtime = mtime
            elif path in self.directories:
                if mtime >= 0:
                    self.directories[path] = mtime
            else:
                raise FileNotFoundError(f"File does not exist: {path}")

    def open(self, path: str):
        return io.BytesIO(self.read_file(path))

    def create(self, path: str, overwrite: bool = True,
               replication: int = 0, block_size: int = 0):
        path = normalize_path(path)
        with self._lock:
            if not overwrite and (path in self.files or path in self.directories):
                raise FileExistsError(path)
            # Make the file visible immediately, as HDFS does
            self.write_file(path, b"", replication=replication, block_size=block_size)
        return _CommitOnClose(self, path, replication, block_size)

    def delete(self, path: str, recursive: bool = False) -> bool:
        path = normalize_path(path)
        with self._lock:
            if path in self.files:
                del self.files[path]
                return True
            if path not in self.directories or path == "/":
                return False
            prefix = path + "/"
            nested = [p for p in self.files if p.startswith(prefix)]
            nested_dirs = [d for d in self.directories if d.startswith(prefix)]
            if (nested or nested_dirs) and not recursive:
                raise OSError(f"Directory is not empty: {path}")
            for p in nested:
                del self.files[p]
            for d in nested_dirs:
                del self.directories[d]
            del self.directories[path]
            return True

    def rename(self, src: str, dst: str) -> bool:
        src = normalize_path(src)
        dst = normalize_path(dst)
        with self._lock:
            if dst in self.files or dst in self.directories:
                return False
            if self._parent(dst) not in self.directories:
                return False
            if src in self.files:
                self.files[dst] = self.files.pop(src)
                return True
            if src not in self.directories:
                return False
            prefix = src + "/"
            for p in [p for p in self.files if p.startswith(prefix)]:
                self.files[dst + p[len(src):]] = self.files.pop(p)
            for d in [d for d in self.directories if d.startswith(prefix)]:
                self.directories[dst + d[len(src):]] = self.directories.pop(d)
            self.directories[dst] = self.directories.pop(src)
            return True

    def mkdirs(self, path: str) -> bool:
        path = normalize_path(path)
        with self._lock:
            current = ""
            for part in [p for p in path.split("/") if p]:
                current += "/" + part
                if current in self.files:
                    return False
                self.directories.setdefault(current, now_ms())
            return True

    def mark_corrupt(self, path: str, offset: int) -> None:
        with self._lock:
            self.corrupt_blocks.add((normalize_path(path), offset))

    def mark_decommissioning(self, path: str, offset: int) -> None:
        with self._lock:
            self.decommissioning_blocks.add((normalize_path(path), offset))

    def list_corrupt_file_blocks(self) -> List[Tuple[str, int]]:
        with self._lock:
            return sorted(self.corrupt_blocks)

    def list_decommissioning_file_blocks(self) -> List[Tuple[str, int]]:
        with self._lock:
            return sorted(self.decommissioning_blocks)

    def install_recovered_block(self, path: str, offset: int,
                                recovered_path: str) -> None:
        path = normalize_path(path)
        block = self.read_file(recovered_path)
        with self._lock:
            if path not in self.files:
                raise FileNotFoundError(f"File does not exist: {path}")
            target = self.files[path]
            # Data is rewritten in place; the file version does not change
            target.data[offset:offset + len(block)] = block
            self.corrupt_blocks.discard((path, offset))
            self.decommissioning_blocks.discard((path, offset))
