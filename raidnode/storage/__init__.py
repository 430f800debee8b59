"""
Filesystem abstractions used by the RAID engine.
"""

from .filesystem import FileSystem
from .memory_fs import MemoryFileSystem
from .local_fs import LocalFileSystem


def get_filesystem(root_dir=None, **kwargs) -> FileSystem:
    """Factory function to get the appropriate filesystem"""
    if root_dir:
        return LocalFileSystem(root_dir, **kwargs)
    return MemoryFileSystem(**kwargs)


__all__ = [
    "get_filesystem",
    "FileSystem",
    "MemoryFileSystem",
    "LocalFileSystem",
]
