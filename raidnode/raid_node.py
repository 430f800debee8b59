"""
RaidNode: the daemon that owns the RAID maintenance loops.
"""
import asyncio
import logging
import zlib
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from aiohttp import web

from .api.rpc import RAID_PROTOCOL, create_rpc_app
from .config import PolicyCatalog, RaidConfig, load_raid_config
from .errors import NotSupported, RaidConfigurationError
from .models import PolicyInfo
from .monitoring import RaidMetrics
from .raid.archive import Archiver, HarMonitor
from .raid.codec import CodecRegistry
from .raid.context import RaidContext
from .raid.erasure import ErasureCodeRegistry
from .raid.integrity import BlockIntegrityMonitor
from .raid.job_runner import JobRunner, LocalJobRunner, ThreadPoolJobRunner
from .raid.purge import PurgeMonitor
from .raid.raid_executor import RaidExecutor
from .raid.recovery import FileRecoveryService, ParityFileRecovery, UnsupportedFileRecovery
from .raid.statistics_collector import StatisticsCollector
from .raid.trigger_monitor import TriggerMonitor
from .storage import FileSystem, get_filesystem

logger = logging.getLogger(__name__)

RAID_PROTOCOL_VERSION = 1
RAID_PROTOCOL_METHODS = (
    "getAllPolicies",
    "recoverFile",
    "getProtocolVersion",
    "getProtocolSignature",
)


class RaidNode(ABC):
    """Base RAID daemon; subclasses decide how raid jobs are executed"""

    def __init__(self, config: RaidConfig,
                 fs: Optional[FileSystem] = None,
                 codecs: Optional[CodecRegistry] = None,
                 erasure_codes: Optional[ErasureCodeRegistry] = None,
                 catalog: Optional[PolicyCatalog] = None,
                 metrics: Optional[RaidMetrics] = None,
                 archiver: Optional[Archiver] = None,
                 parity_fs: Optional[FileSystem] = None):
        self.config = config
        if codecs is None:
            codecs = self._load_codecs(config)
        if fs is None:
            fs = self._create_filesystem(config)
        if parity_fs is None and config.parity_fs_root:
            parity_fs = get_filesystem(config.parity_fs_root)
        self.context = RaidContext(
            config=config,
            catalog=catalog or PolicyCatalog(config, codecs),
            codecs=codecs,
            erasure_codes=erasure_codes or ErasureCodeRegistry(),
            fs=fs,
            metrics=metrics or RaidMetrics(),
            parity_fs=parity_fs,
        )
        self.executor = RaidExecutor(
            self.context.fs, codecs, self.context.erasure_codes,
            statistics=self.context.statistics, metrics=self.context.metrics,
            parity_fs=parity_fs,
        )
        self.job_runner = self.create_job_runner(self.executor)
        self.rpc_executor = ThreadPoolExecutor(
            max_workers=config.handler_count, thread_name_prefix="raidnode-rpc"
        )
        self.recovery_service = self.create_recovery_service()
        self.block_recovery = ParityFileRecovery(
            self.context.fs, codecs, self.context.erasure_codes,
            config.recovery_location, metrics=self.context.metrics,
            parity_fs=parity_fs,
        )

        self.trigger_monitor = TriggerMonitor(self.context, self.job_runner)
        self.har_monitor = HarMonitor(self.context, archiver)
        self.purge_monitor = PurgeMonitor(self.context)
        self.statistics_collector = StatisticsCollector(self.context)
        self.block_integrity_monitor = BlockIntegrityMonitor(self.context, self.block_recovery)

        self._tasks: List[asyncio.Task] = []
        self._runner: Optional[web.AppRunner] = None
        self._started = False
        self._stopped = False

    @staticmethod
    def _load_codecs(config: RaidConfig) -> CodecRegistry:
        if not config.codecs_json:
            logger.warning("No codecs configured, nothing will be raided")
            return CodecRegistry()
        return CodecRegistry.from_json(config.codecs_json)

    @staticmethod
    def _create_filesystem(config: RaidConfig) -> FileSystem:
        if not config.fs_root:
            logger.warning("No raid.fs.root configured, using an in-memory filesystem")
        return get_filesystem(config.fs_root)

    @abstractmethod
    def create_job_runner(self, executor: RaidExecutor) -> JobRunner:
        """Build the runner that executes raid jobs submitted by the trigger loop"""
        pass

    def create_recovery_service(self) -> FileRecoveryService:
        return UnsupportedFileRecovery()

    @property
    def running(self) -> bool:
        return self.context.running

    async def start(self) -> None:
        """Start the RPC server and every maintenance loop"""
        if self._started:
            return
        self._started = True

        app = create_rpc_app(self)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.server_host, self.config.server_port)
        await site.start()
        logger.info(f"RaidNode up at: {self.config.server_address}")

        loops = [
            ("trigger", self.trigger_monitor.run()),
            ("har", self.har_monitor.run()),
            ("purge", self.purge_monitor.run()),
            ("statistics", self.statistics_collector.run()),
        ]
        if not self.config.disable_corrupt_block_fixer:
            loops.append(("corruption",
                          self.block_integrity_monitor.get_corruption_monitor().run()))
        else:
            logger.info("Corrupt block fixer is disabled")
        if not self.config.disable_decommissioning_block_copier:
            loops.append(("decommissioning",
                          self.block_integrity_monitor.get_decommissioning_monitor().run()))
        else:
            logger.info("Decommissioning block copier is disabled")

        for name, coro in loops:
            self._tasks.append(asyncio.create_task(coro, name=f"raidnode-{name}"))

    def stop(self) -> None:
        """Signal every loop to exit. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping RaidNode")
        self.context.stop_event.set()

    async def join(self) -> None:
        """Wait until every loop has observed the stop signal and exited"""
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error(f"Loop {task.get_name()} exited with error: {result}")
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self.job_runner.shutdown()
        self.rpc_executor.shutdown(wait=False)
        logger.info("RaidNode stopped")

    def get_all_policies(self) -> List[PolicyInfo]:
        return self.context.catalog.get_all_policies()

    def recover_file(self, path: str, corrupt_offset: int) -> str:
        return self.recovery_service.recover_file(path, corrupt_offset)

    def get_running_jobs_for_policy(self, policy_name: str) -> int:
        return self.job_runner.get_running_jobs_for_policy(policy_name)

    def get_protocol_version(self, protocol: str, client_version: int) -> int:
        if protocol == RAID_PROTOCOL:
            return RAID_PROTOCOL_VERSION
        raise NotSupported(f"Unknown protocol to name node: {protocol}")

    def get_protocol_signature(self, protocol: str, client_version: int) -> Dict[str, int]:
        version = self.get_protocol_version(protocol, client_version)
        methods_hash = zlib.crc32(",".join(sorted(RAID_PROTOCOL_METHODS)).encode("utf-8"))
        return {"version": version, "methods_hash": methods_hash}


class LocalRaidNode(RaidNode):
    """Raids files inline in the trigger loop's worker thread"""

    def create_job_runner(self, executor: RaidExecutor) -> JobRunner:
        return LocalJobRunner(executor)


class ThreadedRaidNode(RaidNode):
    """Raids files on a thread pool, tracking running jobs per policy"""

    def create_job_runner(self, executor: RaidExecutor) -> JobRunner:
        return ThreadPoolJobRunner(executor, max_workers=self.config.job_runner_threads)


RAID_NODE_REGISTRY: Dict[str, Callable[..., RaidNode]] = {
    "local": LocalRaidNode,
    "threaded": ThreadedRaidNode,
}


def create_raid_node(config: Optional[RaidConfig] = None, **kwargs) -> RaidNode:
    """Construct the RaidNode implementation named by raid.classname"""
    config = config or load_raid_config()
    try:
        factory = RAID_NODE_REGISTRY[config.raidnode_classname]
    except KeyError:
        raise RaidConfigurationError(
            f"Unknown raid.classname {config.raidnode_classname}, "
            f"expected one of {sorted(RAID_NODE_REGISTRY)}"
        )
    return factory(config, **kwargs)
