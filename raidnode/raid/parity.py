"""Resolve the parity file that protects a source file."""
import posixpath
from typing import Optional

from ..models import Codec, ParityAssociation
from ..storage import FileSystem
from ..storage.paths import HAR_SUFFIX, get_original_parity_file, join_path


def get_archive_member_path(parity_path: str) -> str:
    """Where parity_path lives once its directory has been archived"""
    parent, name = posixpath.split(parity_path)
    archive = join_path(parent, posixpath.basename(parent) + HAR_SUFFIX)
    return join_path(archive, name)


def get_parity_file(codec: Codec, src_path: str, src_fs: FileSystem,
                    parity_fs: Optional[FileSystem] = None) -> Optional[ParityAssociation]:
    """Return the parity association for src_path, or None.

    A parity file is only valid while its modification time equals the
    source's; the association is recomputed on every call.
    """
    parity_fs = parity_fs or src_fs
    try:
        src_stat = src_fs.get_file_status(src_path)
    except FileNotFoundError:
        return None
    if src_stat.is_dir:
        return None

    parity_path = get_original_parity_file(codec.parity_directory, src_stat.path)
    for candidate, archived in ((parity_path, False),
                                (get_archive_member_path(parity_path), True)):
        try:
            parity_stat = parity_fs.get_file_status(candidate)
        except FileNotFoundError:
            continue
        if not parity_stat.is_dir and \
                parity_stat.modification_time == src_stat.modification_time:
            return ParityAssociation(path=candidate, snapshot=parity_stat,
                                     archived=archived)
    return None
