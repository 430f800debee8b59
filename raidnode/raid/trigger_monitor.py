"""
Policy trigger engine.

Periodically decides, per policy, whether more files should be selected
(by walking the policy's source paths or by reading its file list) and
hands the selected files to a job runner.
"""
import asyncio
import io
import logging
import time
from typing import Dict, List, Sequence

from ..models import FileSnapshot, PolicyInfo, PolicyState
from .context import RaidContext
from .job_runner import JobRunner
from .traversal import FINISH_TOKEN, DirectoryTraversal

logger = logging.getLogger(__name__)


class TriggerMonitor:
    """Periodically checks to see which policies should be fired."""

    def __init__(self, context: RaidContext, job_runner: JobRunner):
        self.context = context
        self.job_runner = job_runner
        self.policy_state_map: Dict[str, PolicyState] = {}
        self.all_policies: List[PolicyInfo] = context.catalog.get_all_policies()

    @staticmethod
    def now() -> float:
        return time.time()

    def get_policy_state(self, policy_name: str) -> PolicyState:
        if policy_name not in self.policy_state_map:
            self.policy_state_map[policy_name] = PolicyState()
        return self.policy_state_map[policy_name]

    def should_read_file_list(self, info: PolicyInfo) -> bool:
        if info.file_list_path is None or not info.should_raid:
            return False
        state = self.get_policy_state(info.name)
        if state.is_file_list_read_in_progress():
            # While a read is in progress a policy may have up to
            # max_jobs_per_policy jobs running
            running = self.job_runner.get_running_jobs_for_policy(info.name)
            return running < self.context.catalog.get_max_jobs_per_policy()
        return self.now() > state.start_time + self.context.catalog.get_periodicity()

    def should_select_files(self, info: PolicyInfo) -> bool:
        """Should we select more files for a policy."""
        if not info.should_raid:
            return False
        state = self.get_policy_state(info.name)
        if state.is_scan_in_progress():
            running = self.job_runner.get_running_jobs_for_policy(info.name)
            return running < self.context.catalog.get_max_jobs_per_policy()
        # Check the time of the last full traversal before starting a fresh one
        return self.now() > state.start_time + self.context.catalog.get_periodicity()

    def expand_src_paths(self, info: PolicyInfo) -> List[FileSnapshot]:
        roots: Dict[str, FileSnapshot] = {}
        for expression in info.src_paths:
            for stat in self.context.fs.glob(expression):
                roots.setdefault(stat.path, stat)
        return list(roots.values())

    def select_files(self, info: PolicyInfo,
                     all_policies: Sequence[PolicyInfo]) -> List[FileSnapshot]:
        """Returns the files that need raiding, at most max_files_per_job.

        The files may come from resuming a previously suspended traversal.
        """
        select_limit = self.context.catalog.get_max_files_per_job()
        state = self.get_policy_state(info.name)

        if state.is_scan_in_progress():
            logger.info(f"Resuming traversal for policy {info.name}")
            traversal = state.pending_traversal
        else:
            logger.info(f"Start new traversal for policy {info.name}")
            state.start_time = self.now()
            traversal = DirectoryTraversal.raid_file_retriever(
                info, self.expand_src_paths(info), all_policies,
                self.context.fs, self.context.codecs,
                num_threads=self.context.config.traversal_threads,
                shuffle=self.context.config.traversal_shuffle,
                parity_fs=self.context.get_parity_fs(),
            )
            state.set_traversal(traversal)

        selected: List[FileSnapshot] = []
        while True:
            f = traversal.next()
            if f is FINISH_TOKEN:
                break
            selected.append(f)
            if len(selected) == select_limit:
                return selected
        state.reset_traversal()
        return selected

    def read_file_list(self, info: PolicyInfo) -> List[FileSnapshot]:
        selected: List[FileSnapshot] = []
        if info.file_list_path is None:
            return selected

        select_limit = self.context.catalog.get_max_files_per_job()
        state = self.get_policy_state(info.name)
        if not state.is_file_list_read_in_progress():
            state.start_time = self.now()
            try:
                raw = self.context.fs.open(info.file_list_path)
                state.file_list_reader = io.TextIOWrapper(raw, encoding="utf-8")
            except OSError as e:
                logger.warning(f"Could not create reader for {info.file_list_path}: {str(e)}")
                return selected

        reached_eof = True
        try:
            for line in state.file_list_reader:
                path = line.strip()
                if not path:
                    continue
                selected.append(self.context.fs.get_file_status(path))
                if len(selected) >= select_limit:
                    reached_eof = False
                    break
            if reached_eof:
                state.reset_file_list_read()
        except OSError as e:
            logger.error(f"Encountered error in file list read of {info.file_list_path}: {str(e)}")
            state.reset_file_list_read()
        return selected

    def do_process(self) -> None:
        """One sweep over all policies.

        If the policy file has changed, the new policies replace the
        working list before the sweep.
        """
        if self.context.catalog.reload_configs_if_necessary():
            self.all_policies = self.context.catalog.get_all_policies()
        all_policies = self.all_policies
        logger.info(f"TriggerMonitor.do_process {len(all_policies)}")

        for info in all_policies:
            if not self.context.running:
                return
            self.get_policy_state(info.name)

            if info.file_list_path is not None:
                if not self.should_read_file_list(info):
                    continue
                try:
                    filtered = self.read_file_list(info)
                except Exception:
                    self.context.metrics.policy_errors.labels(info.name, "select").inc()
                    logger.error(f"Exception while reading file list of policy {info.name}",
                                 exc_info=True)
                    continue
                source = "filelist"
            elif self.should_select_files(info):
                logger.info(f"Triggering Policy Filter {info.name} {info.src_path}")
                try:
                    filtered = self.select_files(info, all_policies)
                except Exception:
                    self.context.metrics.policy_errors.labels(info.name, "select").inc()
                    logger.error(
                        f"Exception while invoking filter on policy {info.name} "
                        f"srcPath {info.src_path}", exc_info=True
                    )
                    continue
                source = "traversal"
            else:
                continue

            if not filtered:
                logger.info(f"No filtered paths for policy {info.name}")
                continue
            self.context.metrics.files_selected.labels(info.name, source).inc(len(filtered))

            logger.info(f"Triggering Policy Action {info.name} {len(filtered)} files")
            try:
                self.job_runner.submit(info, filtered)
            except Exception:
                self.context.metrics.policy_errors.labels(info.name, "action").inc()
                logger.error(
                    f"Exception while invoking action on policy {info.name} "
                    f"srcPath {info.src_path}", exc_info=True
                )
                continue

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        while self.context.running:
            if not await self.context.sleep(self.context.config.trigger_sleep_time):
                break
            try:
                await loop.run_in_executor(None, self.do_process)
            except Exception:
                logger.error("Trigger sweep failed", exc_info=True)
            finally:
                logger.info("Trigger thread continuing to run...")
        self.close()
        logger.info("Leaving Trigger thread.")

    def close(self) -> None:
        """Release open traversals and file list readers"""
        for state in self.policy_state_map.values():
            state.reset_traversal()
            try:
                state.reset_file_list_read()
            except OSError as e:
                logger.warning(f"Error closing file list reader: {str(e)}")
