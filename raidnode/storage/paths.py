"""Path naming and block arithmetic shared by the RAID components."""

import posixpath
import random
import re
import time

from ..models import FileSnapshot

HAR_SUFFIX = "_raid.har"
PARITY_HAR_PARTFILE_PATTERN = re.compile(".*" + re.escape(HAR_SUFFIX) + "/part-.*")
RECOVERED_SUFFIX = ".recovered"

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://[^/]*")


def now_ms() -> int:
    """Current wall clock time in milliseconds."""
    return int(time.time() * 1000)


def random_long() -> int:
    """Random signed 64-bit integer used to keep scratch names unique."""
    return random.randint(-(2 ** 63), 2 ** 63 - 1)


def strip_scheme(path: str) -> str:
    """Drop a leading scheme://authority from a qualified path."""
    return _SCHEME_RE.sub("", path) or "/"


def normalize_path(path: str) -> str:
    path = strip_scheme(path)
    if not path.startswith("/"):
        path = "/" + path
    path = posixpath.normpath(path)
    # normpath keeps a leading double slash
    if path.startswith("//"):
        path = "/" + path.lstrip("/")
    return path


def make_relative(path: str) -> str:
    """Make an absolute path relative by stripping the leading /"""
    path = strip_scheme(path)
    if not path.startswith("/"):
        return path
    return path[1:]


def join_path(parent: str, child: str) -> str:
    if not child:
        return parent
    return posixpath.join(parent, child)


def get_original_parity_file(dest_prefix: str, src_path: str) -> str:
    """Parity path mirroring the source's relative path under dest_prefix."""
    return join_path(strip_scheme(dest_prefix), make_relative(src_path))


def is_parity_har_part_file(path: str) -> bool:
    return PARITY_HAR_PARTFILE_PATTERN.match(strip_scheme(path)) is not None


def ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def num_blocks(stat: FileSnapshot) -> int:
    if stat.block_size <= 0:
        return 0
    return ceil_div(stat.length, stat.block_size)


def num_stripes(blocks: int, stripe_length: int) -> int:
    return ceil_div(blocks, stripe_length)


def saving_from_raiding_file(stat: FileSnapshot, stripe_length: int,
                             parity_length: int, target_replication: int,
                             parity_replication: int) -> int:
    """Raw bytes saved by raiding stat, net of the parity it needs."""
    if stat.replication <= target_replication:
        return 0
    stripes = num_stripes(num_blocks(stat), stripe_length)
    source_saving = stat.length * (stat.replication - target_replication)
    parity_blocks = stripes * parity_length
    return source_saving - parity_blocks * parity_replication * stat.block_size
