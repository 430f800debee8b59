"""
Raid executor: turns replicated files into reduced replication plus parity.
"""
import logging
import time
from typing import List, Optional, Sequence

from prometheus_client import CollectorRegistry

from ..errors import ConsistencyViolation, RaidError, ReplicationAdjustmentFailure
from ..models import BlockLocation, Codec, FileSnapshot, PolicyInfo, Statistics
from ..monitoring import RaidMetrics
from ..storage import FileSystem
from ..storage.paths import ceil_div, get_original_parity_file
from .codec import CodecRegistry
from .erasure import ErasureCodeRegistry

logger = logging.getLogger(__name__)

STATISTICS_LOG_INTERVAL = 1000


class RaidExecutor:
    """Raids files on behalf of policies and accounts for the space used"""

    def __init__(self, fs: FileSystem, codecs: CodecRegistry,
                 erasure_codes: ErasureCodeRegistry,
                 statistics: Optional[Statistics] = None,
                 metrics: Optional[RaidMetrics] = None,
                 parity_fs: Optional[FileSystem] = None):
        self.fs = fs
        self.parity_fs = parity_fs or fs
        self.codecs = codecs
        self.erasure_codes = erasure_codes
        self.statistics = statistics if statistics is not None else Statistics()
        self.metrics = metrics or RaidMetrics(CollectorRegistry())

    def raid_files(self, policy: PolicyInfo, paths: Sequence[FileSnapshot]) -> int:
        """RAID a list of files. Returns how many were raided."""
        codec = self.codecs.get_codec(policy.codec_id)
        target_repl = policy.target_replication
        meta_repl = policy.meta_replication
        simulate = policy.simulate

        raided = 0
        for count, stat in enumerate(paths):
            try:
                if self.do_raid(stat, codec.parity_directory, codec, simulate,
                                target_repl, meta_repl, policy_name=policy.name):
                    raided += 1
                    self.metrics.files_raided.labels(policy.name, "raided").inc()
                else:
                    self.metrics.files_raided.labels(policy.name, "skipped").inc()
            except (RaidError, OSError) as e:
                self.metrics.files_raided.labels(policy.name, "failed").inc()
                logger.error(f"Failed to raid {stat.path} for policy {policy.name}: {str(e)}")
            if count % STATISTICS_LOG_INTERVAL == 0:
                logger.info(f"RAID statistics {self.statistics}")
        logger.info(f"RAID statistics {self.statistics}")
        return raided

    def do_raid_with_policy(self, policy: PolicyInfo, stat: FileSnapshot,
                            statistics: Optional[Statistics] = None) -> bool:
        """RAID an individual file using a policy's parameters"""
        codec = self.codecs.get_codec(policy.codec_id)
        return self.do_raid(stat, codec.parity_directory, codec, policy.simulate,
                            policy.target_replication, policy.meta_replication,
                            statistics=statistics, policy_name=policy.name)

    def do_raid(self, stat: FileSnapshot, dest_prefix: str, codec: Codec,
                simulate: bool, target_repl: int, meta_repl: int,
                statistics: Optional[Statistics] = None,
                policy_name: str = "") -> bool:
        """RAID an individual file.

        Returns False when the file is too small to be worth raiding or its
        replication could not be lowered. Raises ConsistencyViolation if the
        source changed while its parity was being generated.
        """
        statistics = statistics if statistics is not None else self.statistics
        started = time.time()

        locations = self.fs.get_file_block_locations(stat, 0, stat.length)
        # Parity overhead is not worth it for two blocks or fewer
        if len(locations) <= 2:
            return False

        disk_space = sum(loc.length * stat.replication for loc in locations)
        statistics.add_processed(len(locations), disk_space)

        self.generate_parity_file(stat, target_repl, dest_prefix, codec,
                                  locations, meta_repl)

        if not simulate and stat.replication != target_repl:
            if not self.fs.set_replication(stat.path, target_repl):
                failure = ReplicationAdjustmentFailure(stat.path, target_repl)
                logger.info(failure.message)
                self.metrics.replication_failures.labels(policy_name or codec.id).inc()
                statistics.add_remaining(disk_space)
                return False

        statistics.add_remaining(sum(loc.length * target_repl for loc in locations))

        # The last parity block may be partially filled; counted as full
        num_meta = ceil_div(len(locations), codec.stripe_length)
        statistics.add_meta(num_meta * meta_repl, num_meta * meta_repl * stat.block_size)
        self.metrics.parity_blocks.labels(codec.id).inc(num_meta * meta_repl)
        self.metrics.raid_duration.labels(codec.id).observe(time.time() - started)
        return True

    def generate_parity_file(self, stat: FileSnapshot, target_repl: int,
                             dest_prefix: str, codec: Codec,
                             locations: List[BlockLocation], meta_repl: int) -> bool:
        """Create or refresh the parity file. Returns True if it was encoded."""
        in_path = stat.path
        out_path = get_original_parity_file(dest_prefix, in_path)

        try:
            existing = self.parity_fs.get_file_status(out_path)
            if existing.modification_time == stat.modification_time and \
                    stat.replication == target_repl:
                logger.info(
                    f"Parity file for {in_path}({len(locations)}) is {out_path} "
                    f"already upto-date and file is at target replication. "
                    f"Nothing more to do."
                )
                return False
        except FileNotFoundError:
            # The parity file may not exist yet
            pass

        encoder = self.erasure_codes.encoder_for_codec(codec)
        encoder.encode_file(self.fs, in_path, self.parity_fs, out_path, meta_repl)

        # Tie the parity version to the source version it was computed from;
        # the clocks of the two namespaces need not agree.
        self.parity_fs.set_times(out_path, stat.modification_time, -1)

        out_stat = self.parity_fs.get_file_status(out_path)
        in_stat = self.fs.get_file_status(in_path)
        if stat.modification_time != in_stat.modification_time:
            raise ConsistencyViolation(
                f"Source file changed mtime during raiding from "
                f"{stat.modification_time} to {in_stat.modification_time}"
            )
        if out_stat.modification_time != in_stat.modification_time:
            raise ConsistencyViolation(
                f"Parity file mtime {out_stat.modification_time} does not match "
                f"source mtime {in_stat.modification_time}"
            )
        logger.info(
            f"Source file {in_path} of size {in_stat.length} Parity file {out_path} "
            f"of size {out_stat.length} src mtime {stat.modification_time} "
            f"parity mtime {out_stat.modification_time}"
        )
        return True
