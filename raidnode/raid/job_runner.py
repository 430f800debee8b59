"""
Runners that execute raid jobs and track how many run per policy.
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Sequence

from ..models import FileSnapshot, PolicyInfo
from .raid_executor import RaidExecutor

logger = logging.getLogger(__name__)


class JobRunner(ABC):
    """Executes batches of files selected by the trigger engine"""

    def __init__(self, executor: RaidExecutor):
        self.executor = executor
        self._running: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def _job_started(self, policy_name: str) -> None:
        with self._lock:
            self._running[policy_name] += 1
            count = self._running[policy_name]
        self.executor.metrics.running_jobs.labels(policy_name).set(count)

    def _job_finished(self, policy_name: str) -> None:
        with self._lock:
            self._running[policy_name] -= 1
            count = self._running[policy_name]
        self.executor.metrics.running_jobs.labels(policy_name).set(count)

    def get_running_jobs_for_policy(self, policy_name: str) -> int:
        with self._lock:
            return self._running.get(policy_name, 0)

    @abstractmethod
    def submit(self, policy: PolicyInfo, paths: Sequence[FileSnapshot]) -> None:
        pass

    def shutdown(self, wait: bool = True) -> None:
        pass


class LocalJobRunner(JobRunner):
    """Runs each job inline in the caller's thread"""

    def submit(self, policy: PolicyInfo, paths: Sequence[FileSnapshot]) -> None:
        self._job_started(policy.name)
        try:
            self.executor.raid_files(policy, paths)
        finally:
            self._job_finished(policy.name)


class ThreadPoolJobRunner(JobRunner):
    """Runs jobs on a pool of worker threads"""

    def __init__(self, executor: RaidExecutor, max_workers: int = 4):
        super().__init__(executor)
        self._pool = ThreadPoolExecutor(max_workers=max_workers,
                                        thread_name_prefix="raid-job")
        self._futures: List[Future] = []

    def submit(self, policy: PolicyInfo, paths: Sequence[FileSnapshot]) -> None:
        batch = list(paths)
        self._job_started(policy.name)
        try:
            future = self._pool.submit(self._run, policy, batch)
        except RuntimeError:
            self._job_finished(policy.name)
            raise
        self._futures = [f for f in self._futures if not f.done()] + [future]

    def _run(self, policy: PolicyInfo, paths: List[FileSnapshot]) -> int:
        try:
            return self.executor.raid_files(policy, paths)
        except Exception:
            logger.error(f"Raid job for policy {policy.name} failed", exc_info=True)
            raise
        finally:
            self._job_finished(policy.name)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
