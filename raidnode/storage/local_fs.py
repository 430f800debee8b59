"""
Local disk filesystem implementation.
"""

import os
import shutil
import threading
import logging
from typing import Dict, List

from ..models import FileSnapshot
from .filesystem import FileSystem
from .paths import make_relative, normalize_path

logger = logging.getLogger(__name__)


class LocalFileSystem(FileSystem):
    """Filesystem rooted at a local directory.

    Local disks keep a single copy of every file, so replication and block
    size are tracked in memory on top of the real files.
    """

    scheme = "file"

    def __init__(self, root_dir: str, default_block_size: int = 64 * 1024 * 1024,
                 default_replication: int = 3):
        """Initialize local filesystem.

        Args:
            root_dir: Directory that logical "/" maps onto
            default_block_size: Block size reported for files without an override
            default_replication: Replication reported for files without an override
        """
        self.root_dir = os.path.abspath(root_dir)
        self.default_block_size = default_block_size
        self.default_replication = default_replication
        self._replication: Dict[str, int] = {}
        self._block_size: Dict[str, int] = {}
        self._lock = threading.Lock()

        try:
            os.makedirs(self.root_dir, exist_ok=True)
            logger.info(f"Initialized local filesystem at {self.root_dir}")
        except OSError as e:
            logger.error(f"Failed to create root directory: {str(e)}")
            raise

    def _local(self, path: str) -> str:
        return os.path.join(self.root_dir, make_relative(normalize_path(path)))

    def _snapshot(self, path: str, st: os.stat_result) -> FileSnapshot:
        is_dir = os.path.isdir(self._local(path))
        with self._lock:
            replication = 0 if is_dir else self._replication.get(path, self.default_replication)
            block_size = 0 if is_dir else self._block_size.get(path, self.default_block_size)
        return FileSnapshot(
            path=path,
            length=0 if is_dir else st.st_size,
            block_size=block_size,
            replication=replication,
            modification_time=st.st_mtime_ns // 1_000_000,
            is_dir=is_dir,
        )

    def get_file_status(self, path: str) -> FileSnapshot:
        path = normalize_path(path)
        st = os.stat(self._local(path))
        return self._snapshot(path, st)

    def list_status(self, path: str) -> List[FileSnapshot]:
        path = normalize_path(path)
        local = self._local(path)
        if not os.path.isdir(local):
            return [self._snapshot(path, os.stat(local))]
        result = []
        for name in sorted(os.listdir(local)):
            child = path.rstrip("/") + "/" + name
            try:
                result.append(self._snapshot(child, os.stat(self._local(child))))
            except FileNotFoundError:
                # Removed while listing
                continue
        return result

    def set_replication(self, path: str, replication: int) -> bool:
        path = normalize_path(path)
        if not os.path.isfile(self._local(path)):
            return False
        with self._lock:
            self._replication[path] = replication
        return True

    def set_times(self, path: str, mtime: int, atime: int = -1) -> None:
        local = self._local(path)
        st = os.stat(local)
        atime_ns = atime * 1_000_000 if atime >= 0 else st.st_atime_ns
        mtime_ns = mtime * 1_000_000 if mtime >= 0 else st.st_mtime_ns
        os.utime(local, ns=(atime_ns, mtime_ns))

    def open(self, path: str):
        return open(self._local(path), "rb")

    def create(self, path: str, overwrite: bool = True,
               replication: int = 0, block_size: int = 0):
        path = normalize_path(path)
        local = self._local(path)
        os.makedirs(os.path.dirname(local), exist_ok=True)
        with self._lock:
            if replication:
                self._replication[path] = replication
            if block_size:
                self._block_size[path] = block_size
        return open(local, "wb" if overwrite else "xb")

    def delete(self, path: str, recursive: bool = False) -> bool:
        path = normalize_path(path)
        local = self._local(path)
        try:
            if os.path.isdir(local):
                if recursive:
                    shutil.rmtree(local)
                else:
                    os.rmdir(local)
            else:
                os.remove(local)
        except FileNotFoundError:
            return False
        with self._lock:
            prefix = path.rstrip("/") + "/"
            for overlay in (self._replication, self._block_size):
                for key in [k for k in overlay if k == path or k.startswith(prefix)]:
                    del overlay[key]
        return True

    def rename(self, src: str, dst: str) -> bool:
        src = normalize_path(src)
        dst = normalize_path(dst)
        local_dst = self._local(dst)
        if os.path.exists(local_dst) or not os.path.isdir(os.path.dirname(local_dst)):
            return False
        try:
            os.rename(self._local(src), local_dst)
        except OSError as e:
            logger.error(f"Error renaming {src} to {dst}: {str(e)}")
            return False
        with self._lock:
            prefix = src.rstrip("/") + "/"
            for overlay in (self._replication, self._block_size):
                for key in [k for k in overlay if k == src or k.startswith(prefix)]:
                    overlay[dst + key[len(src):]] = overlay.pop(key)
        return True

    def mkdirs(self, path: str) -> bool:
        try:
            os.makedirs(self._local(path), exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Error creating directory {path}: {str(e)}")
            return False

    def install_recovered_block(self, path: str, offset: int,
                                recovered_path: str) -> None:
        with open(self._local(recovered_path), "rb") as src:
            block = src.read()
        local = self._local(path)
        st = os.stat(local)
        with open(local, "r+b") as dst:
            dst.seek(offset)
            dst.write(block)
        # Keep the source version stable so existing parity stays valid
        os.utime(local, ns=(st.st_atime_ns, st.st_mtime_ns))
