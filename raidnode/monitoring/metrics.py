from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class RaidMetrics:
    """Prometheus collectors for the RAID daemon.

    Built once by the RaidNode and handed to every component that records
    against it. Tests pass a private CollectorRegistry.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        registry = registry if registry is not None else REGISTRY
        self.registry = registry

        # Raid executor
        self.files_raided = Counter(
            'raidnode_files_total',
            'Files handled by the raid executor',
            ['policy', 'result'],  # result: raided/skipped/failed
            registry=registry
        )
        self.replication_failures = Counter(
            'raidnode_replication_failures_total',
            'Source files whose replication could not be lowered',
            ['policy'],
            registry=registry
        )
        self.parity_blocks = Counter(
            'raidnode_parity_blocks_total',
            'Parity blocks created, all replicas counted',
            ['codec'],
            registry=registry
        )
        self.raid_duration = Histogram(
            'raidnode_raid_file_seconds',
            'Time spent raiding a single file',
            ['codec'],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0, 600.0),
            registry=registry
        )

        # Trigger engine
        self.files_selected = Counter(
            'raidnode_files_selected_total',
            'Files selected for raiding by traversal or file list',
            ['policy', 'source'],  # source: traversal/filelist
            registry=registry
        )
        self.running_jobs = Gauge(
            'raidnode_running_jobs',
            'Raid jobs currently running',
            ['policy'],
            registry=registry
        )
        self.policy_errors = Counter(
            'raidnode_policy_errors_total',
            'Failures while selecting or raiding files for a policy',
            ['policy', 'stage'],  # stage: select/action
            registry=registry
        )

        # Archive consolidator
        self.archives = Counter(
            'raidnode_archives_total',
            'Parity directory archive attempts',
            ['codec', 'result'],  # result: created/failed
            registry=registry
        )

        # Recovery and block integrity
        self.block_recoveries = Counter(
            'raidnode_block_recoveries_total',
            'Corrupt block reconstructions',
            ['codec', 'result'],  # result: success/no_parity/failed
            registry=registry
        )
        self.purged_parity_files = Counter(
            'raidnode_purged_parity_files_total',
            'Obsolete parity files deleted',
            ['codec'],
            registry=registry
        )

        # Statistics collector
        self.statistics = Gauge(
            'raidnode_statistics',
            'Accumulated raid statistics',
            ['name'],
            registry=registry
        )
        self.parity_files = Gauge(
            'raidnode_parity_files',
            'Parity files present per codec',
            ['codec'],
            registry=registry
        )
        self.parity_bytes = Gauge(
            'raidnode_parity_bytes',
            'Logical parity bytes present per codec',
            ['codec'],
            registry=registry
        )
