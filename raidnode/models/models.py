"""
Core data models for the RAID maintenance engine
"""
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, TextIO

# Property names carried in a policy's property bag
TARGET_REPLICATION = "targetReplication"
META_REPLICATION = "metaReplication"
SIMULATE = "simulate"
MOD_TIME_PERIOD = "modTimePeriod"


@dataclass(frozen=True)
class FileSnapshot:
    """Point-in-time view of a file or directory.

    Modification times are integer milliseconds so that parity and source
    times can be compared for exact equality.
    """
    path: str
    length: int = 0
    block_size: int = 0
    replication: int = 0
    modification_time: int = 0
    is_dir: bool = False

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class BlockLocation:
    """Location of a single block of a file"""
    offset: int
    length: int
    hosts: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Codec:
    """Erasure coding configuration"""
    id: str
    parity_directory: str
    tmp_parity_directory: str
    tmp_har_directory: str
    stripe_length: int
    parity_length: int
    priority: int
    erasure_code: str
    description: str = ""


@dataclass(frozen=True)
class PolicyInfo:
    """A RAID policy as loaded from the policy catalog."""
    name: str
    src_paths: Tuple[str, ...]
    codec_id: str
    properties: Dict[str, str] = field(default_factory=dict, hash=False)
    file_list_path: Optional[str] = None
    should_raid: bool = True

    def get_property(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.properties.get(key, default)

    @property
    def src_path(self) -> str:
        return ",".join(self.src_paths)

    @property
    def target_replication(self) -> int:
        return int(self.properties[TARGET_REPLICATION])

    @property
    def meta_replication(self) -> int:
        return int(self.properties[META_REPLICATION])

    @property
    def simulate(self) -> bool:
        value = self.properties.get(SIMULATE)
        return value is not None and value.strip().lower() == "true"

    @property
    def mod_time_period_ms(self) -> int:
        return int(self.properties.get(MOD_TIME_PERIOD, "0"))


@dataclass(frozen=True)
class ParityAssociation:
    """Parity file resolved for a source file and codec"""
    path: str
    snapshot: FileSnapshot
    archived: bool = False


class PolicyState:
    """Scan state of a single policy.

    A policy either walks its source paths (pending_traversal) or reads an
    explicit file list (file_list_reader), never both at once.
    """

    def __init__(self):
        self.start_time: float = 0.0
        self.pending_traversal = None
        self.file_list_reader: Optional[TextIO] = None

    def is_file_list_read_in_progress(self) -> bool:
        return self.file_list_reader is not None

    def reset_file_list_read(self) -> None:
        if self.file_list_reader is not None:
            try:
                self.file_list_reader.close()
            finally:
                self.file_list_reader = None

    def is_scan_in_progress(self) -> bool:
        return self.pending_traversal is not None

    def reset_traversal(self) -> None:
        if self.pending_traversal is not None:
            self.pending_traversal.close()
        self.pending_traversal = None

    def set_traversal(self, traversal) -> None:
        self.pending_traversal = traversal


class Statistics:
    """Raw disk usage counters; every replica of a block is counted."""

    def __init__(self):
        self._lock = threading.Lock()
        self.num_processed_blocks = 0  # blocks encountered in namespace
        self.processed_size = 0        # disk space occupied by all blocks
        self.remaining_size = 0        # disk space post RAID
        self.num_meta_blocks = 0       # blocks in parity files
        self.meta_size = 0             # disk space for parity files

    def add_processed(self, blocks: int, size: int) -> None:
        with self._lock:
            self.num_processed_blocks += blocks
            self.processed_size += size

    def add_remaining(self, size: int) -> None:
        with self._lock:
            self.remaining_size += size

    def add_meta(self, blocks: int, size: int) -> None:
        with self._lock:
            self.num_meta_blocks += blocks
            self.meta_size += size

    def clear(self) -> None:
        with self._lock:
            self.num_processed_blocks = 0
            self.processed_size = 0
            self.remaining_size = 0
            self.num_meta_blocks = 0
            self.meta_size = 0

    @property
    def saving_percent(self) -> int:
        if self.processed_size <= 0:
            return 0
        save = self.processed_size - (self.remaining_size + self.meta_size)
        return int(save * 100 / self.processed_size)

    def to_dict(self) -> Dict[str, int]:
        return {
            "num_processed_blocks": self.num_processed_blocks,
            "processed_size": self.processed_size,
            "remaining_size": self.remaining_size,
            "num_meta_blocks": self.num_meta_blocks,
            "meta_size": self.meta_size,
        }

    def __str__(self) -> str:
        return (
            f" numProcessedBlocks = {self.num_processed_blocks}"
            f" processedSize = {self.processed_size}"
            f" postRaidSize = {self.remaining_size}"
            f" numMetaBlocks = {self.num_meta_blocks}"
            f" metaSize = {self.meta_size}"
            f" %save in raw disk space = {self.saving_percent}"
        )


@dataclass
class WorkerStatus:
    """Progress of a block integrity worker"""
    files_fixed: int = 0
    files_failed: int = 0
    last_update: float = 0.0
    highest_priority_files: List[str] = field(default_factory=list)
