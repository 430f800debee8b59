"""
Reconstruction of corrupt source blocks from parity.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from prometheus_client import CollectorRegistry

from ..errors import NoParityAvailable, NotSupported, RecoveryFailure
from ..models import Codec
from ..monitoring import RaidMetrics
from ..storage import FileSystem
from ..storage.paths import RECOVERED_SUFFIX, join_path, make_relative, random_long
from .codec import CodecRegistry
from .erasure import ErasureCodeRegistry
from .parity import get_parity_file

logger = logging.getLogger(__name__)


def recovered_block_path(recovery_fs: FileSystem, recovery_location: str,
                         src_path: str) -> str:
    """Unique scratch name for a reconstructed block of src_path"""
    prefix = recovery_fs.make_qualified(join_path(recovery_location, make_relative(src_path)))
    return f"{prefix}.{random_long()}{RECOVERED_SUFFIX}"


def unraid_corrupt_block(src_fs: FileSystem, src_path: str, codec: Codec,
                         corrupt_offset: int, recovery_fs: FileSystem,
                         recovery_location: str, erasure_codes: ErasureCodeRegistry,
                         parity_fs: Optional[FileSystem] = None) -> str:
    """Rebuild the block of src_path at corrupt_offset into a scratch file.

    Returns the scratch path. On any decode failure the scratch file is
    removed before the error propagates.
    """
    pair = get_parity_file(codec, src_path, src_fs, parity_fs)
    if pair is None:
        logger.warning(f"Could not find {codec.id} parity file for {src_path}")
        raise NoParityAvailable(codec.id, src_path)

    stat = src_fs.get_file_status(src_path)
    limit = min(stat.block_size, stat.length - corrupt_offset)
    decoder = erasure_codes.decoder_for_codec(codec)

    recovered_block = recovered_block_path(recovery_fs, recovery_location, src_path)
    logger.info(f"Creating recovered Block {recovered_block}")

    out = recovery_fs.create(recovered_block)
    try:
        decoder.fix_erased_block(src_fs, src_path, parity_fs or src_fs, pair.path,
                                 stat.block_size, corrupt_offset, limit, out)
        out.close()
        out = None
    except Exception as e:
        if out is not None:
            out.close()
        try:
            recovery_fs.delete(recovered_block)
        except OSError:
            logger.warning(f"Could not delete partial recovered block {recovered_block}")
        if isinstance(e, RecoveryFailure):
            raise
        raise RecoveryFailure(
            f"Failed to recover block at offset {corrupt_offset} of {src_path}: {str(e)}"
        ) from e
    return recovered_block


class FileRecoveryService(ABC):
    """Recovers a corrupt region of a file on request"""

    @abstractmethod
    def recover_file(self, path: str, corrupt_offset: int) -> str:
        pass


class UnsupportedFileRecovery(FileRecoveryService):
    """Recovery surface of a node that only raids files"""

    def recover_file(self, path: str, corrupt_offset: int) -> str:
        raise NotSupported()


class ParityFileRecovery(FileRecoveryService):
    """Rebuilds blocks from whichever codec holds valid parity"""

    def __init__(self, fs: FileSystem, codecs: CodecRegistry,
                 erasure_codes: ErasureCodeRegistry, recovery_location: str,
                 recovery_fs: Optional[FileSystem] = None,
                 metrics: Optional[RaidMetrics] = None,
                 parity_fs: Optional[FileSystem] = None):
        self.fs = fs
        self.codecs = codecs
        self.erasure_codes = erasure_codes
        self.recovery_location = recovery_location
        self.recovery_fs = recovery_fs or fs
        self.parity_fs = parity_fs
        self.metrics = metrics or RaidMetrics(CollectorRegistry())

    def recover_block(self, path: str, corrupt_offset: int) -> Tuple[Codec, str]:
        """Try codecs from highest priority down; the first success wins"""
        last_error: Optional[RecoveryFailure] = None
        for codec in self.codecs.get_codecs():
            try:
                recovered = unraid_corrupt_block(
                    self.fs, path, codec, corrupt_offset, self.recovery_fs,
                    self.recovery_location, self.erasure_codes,
                    parity_fs=self.parity_fs,
                )
            except NoParityAvailable as e:
                self.metrics.block_recoveries.labels(codec.id, "no_parity").inc()
                last_error = e
                continue
            except RecoveryFailure as e:
                self.metrics.block_recoveries.labels(codec.id, "failed").inc()
                logger.error(f"Recovery of {path} with codec {codec.id} failed: {e.message}")
                last_error = e
                continue
            self.metrics.block_recoveries.labels(codec.id, "success").inc()
            return codec, recovered
        if last_error is None:
            raise RecoveryFailure(f"No codecs configured to recover {path}")
        raise last_error

    def recover_file(self, path: str, corrupt_offset: int) -> str:
        return self.recover_block(path, corrupt_offset)[1]
