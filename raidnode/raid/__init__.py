"""
RAID engine: trigger, executor, recovery and archive components.
"""

from .codec import CodecRegistry, codec_from_dict
from .context import RaidContext
from .erasure import Decoder, Encoder, ErasureCodeRegistry
from .parity import get_parity_file
from .raid_executor import RaidExecutor
from .recovery import ParityFileRecovery, UnsupportedFileRecovery, unraid_corrupt_block
from .traversal import FINISH_TOKEN, DirectoryTraversal

__all__ = [
    "CodecRegistry",
    "codec_from_dict",
    "RaidContext",
    "Decoder",
    "Encoder",
    "ErasureCodeRegistry",
    "get_parity_file",
    "RaidExecutor",
    "ParityFileRecovery",
    "UnsupportedFileRecovery",
    "unraid_corrupt_block",
    "FINISH_TOKEN",
    "DirectoryTraversal",
]
