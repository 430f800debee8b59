"""Unit tests for the policy trigger engine."""
import asyncio
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from raidnode.config import PolicyCatalog
from raidnode.raid.job_runner import JobRunner, LocalJobRunner, ThreadPoolJobRunner
from raidnode.raid.raid_executor import RaidExecutor
from raidnode.raid.trigger_monitor import TriggerMonitor
from raidnode.storage import MemoryFileSystem

from conftest import BLOCK_SIZE


@pytest.fixture
def executor(context):
    return RaidExecutor(context.fs, context.codecs, context.erasure_codes,
                        statistics=context.statistics, metrics=context.metrics)


@pytest.fixture
def job_runner(executor):
    runner = MagicMock(spec=JobRunner)
    runner.get_running_jobs_for_policy.return_value = 0
    runner.executor = executor
    return runner


def with_policies(context, *policies):
    context.catalog = PolicyCatalog(context.config, context.codecs, policies=list(policies))
    return context


def populate(make_file, count, prefix="/user/raidtest"):
    return [make_file(f"{prefix}/file{i:03d}", 5) for i in range(count)]


def write_list(fs, path, lines):
    fs.write_file(path, ("\n".join(lines) + "\n").encode("utf-8"))


class TestSelectFiles:
    def test_select_capped_and_resumed(self, context, job_runner, make_file, policy_factory):
        context.config.max_files_per_job = 4
        policy = policy_factory("p", "/user/raidtest")
        with_policies(context, policy)
        created = populate(make_file, 10)
        monitor = TriggerMonitor(context, job_runner)

        first = monitor.select_files(policy, [policy])
        assert len(first) == 4
        assert monitor.get_policy_state("p").is_scan_in_progress()
        second = monitor.select_files(policy, [policy])
        third = monitor.select_files(policy, [policy])
        assert len(third) == 2
        assert not monitor.get_policy_state("p").is_scan_in_progress()

        selected = [s.path for s in first + second + third]
        assert sorted(selected) == sorted(s.path for s in created)

    def test_glob_source_paths(self, context, job_runner, make_file, policy_factory):
        policy = policy_factory("p", "/user/*/logs")
        with_policies(context, policy)
        make_file("/user/a/logs/f", 5)
        make_file("/user/b/logs/f", 5)
        make_file("/user/b/data/f", 5)
        monitor = TriggerMonitor(context, job_runner)

        selected = monitor.select_files(policy, [policy])
        assert sorted(s.path for s in selected) == ["/user/a/logs/f", "/user/b/logs/f"]


class TestSchedulingRules:
    def test_should_select_respects_periodicity(self, context, job_runner, policy_factory):
        policy = policy_factory("p", "/user")
        monitor = TriggerMonitor(context, job_runner)
        assert monitor.should_select_files(policy)

        monitor.get_policy_state("p").start_time = monitor.now()
        assert not monitor.should_select_files(policy)

    def test_should_select_respects_job_cap(self, context, job_runner, policy_factory):
        policy = policy_factory("p", "/user")
        monitor = TriggerMonitor(context, job_runner)
        state = monitor.get_policy_state("p")
        state.set_traversal(MagicMock())
        state.start_time = monitor.now()

        job_runner.get_running_jobs_for_policy.return_value = 1
        assert monitor.should_select_files(policy)
        job_runner.get_running_jobs_for_policy.return_value = 2
        assert not monitor.should_select_files(policy)

    def test_disabled_policy_never_selected(self, context, job_runner, policy_factory):
        policy = policy_factory("p", "/user", should_raid=False, file_list="/lists/p")
        monitor = TriggerMonitor(context, job_runner)
        assert not monitor.should_select_files(policy)
        assert not monitor.should_read_file_list(policy)

    def test_should_read_file_list(self, context, job_runner, policy_factory):
        policy = policy_factory("p", "/user", file_list="/lists/p")
        monitor = TriggerMonitor(context, job_runner)
        assert monitor.should_read_file_list(policy)
        assert not monitor.should_read_file_list(policy_factory("q", "/user"))

        state = monitor.get_policy_state("p")
        state.file_list_reader = MagicMock()
        job_runner.get_running_jobs_for_policy.return_value = 2
        assert not monitor.should_read_file_list(policy)


class TestReadFileList:
    def test_reads_in_chunks(self, context, job_runner, make_file, policy_factory):
        context.config.max_files_per_job = 3
        created = populate(make_file, 5)
        write_list(context.fs, "/lists/p", [s.path for s in created[:2]] + ["", "  "]
                   + [s.path for s in created[2:]])
        policy = policy_factory("p", "/user/raidtest", file_list="/lists/p")
        monitor = TriggerMonitor(context, job_runner)

        first = monitor.read_file_list(policy)
        assert [s.path for s in first] == [s.path for s in created[:3]]
        assert monitor.get_policy_state("p").is_file_list_read_in_progress()

        second = monitor.read_file_list(policy)
        assert [s.path for s in second] == [s.path for s in created[3:]]
        assert not monitor.get_policy_state("p").is_file_list_read_in_progress()

    def test_missing_list(self, context, job_runner, policy_factory):
        policy = policy_factory("p", "/user", file_list="/lists/missing")
        monitor = TriggerMonitor(context, job_runner)
        assert monitor.read_file_list(policy) == []
        assert not monitor.get_policy_state("p").is_file_list_read_in_progress()

    def test_unresolvable_entry_aborts_read(self, context, job_runner, make_file,
                                            policy_factory):
        created = populate(make_file, 2)
        write_list(context.fs, "/lists/p", [created[0].path, "/user/gone", created[1].path])
        policy = policy_factory("p", "/user", file_list="/lists/p")
        monitor = TriggerMonitor(context, job_runner)

        selected = monitor.read_file_list(policy)
        assert [s.path for s in selected] == [created[0].path]
        assert not monitor.get_policy_state("p").is_file_list_read_in_progress()


class TestDoProcess:
    def test_submits_selected_files(self, context, job_runner, make_file, policy_factory):
        policy = policy_factory("p", "/user/raidtest")
        with_policies(context, policy)
        populate(make_file, 3)
        monitor = TriggerMonitor(context, job_runner)

        monitor.do_process()

        job_runner.submit.assert_called_once()
        submitted_policy, paths = job_runner.submit.call_args[0]
        assert submitted_policy is policy
        assert len(paths) == 3

    def test_file_list_used_exclusively(self, context, job_runner, make_file, policy_factory):
        created = populate(make_file, 3)
        write_list(context.fs, "/lists/p", [created[0].path])
        policy = policy_factory("p", "/user/raidtest", file_list="/lists/p")
        with_policies(context, policy)
        monitor = TriggerMonitor(context, job_runner)

        monitor.do_process()

        _, paths = job_runner.submit.call_args[0]
        assert [s.path for s in paths] == [created[0].path]

    def test_failing_policy_does_not_stop_sweep(self, context, job_runner, make_file,
                                                policy_factory):
        bad = policy_factory("bad", "/user/raidtest")
        good = policy_factory("good", "/user/other")
        with_policies(context, bad, good)
        populate(make_file, 3)
        populate(make_file, 3, prefix="/user/other")
        monitor = TriggerMonitor(context, job_runner)

        original = monitor.select_files

        def failing(info, all_policies):
            if info.name == "bad":
                raise RuntimeError("namenode hiccup")
            return original(info, all_policies)

        with patch.object(monitor, "select_files", side_effect=failing):
            monitor.do_process()

        job_runner.submit.assert_called_once()
        assert job_runner.submit.call_args[0][0].name == "good"

    def test_end_to_end_with_local_runner(self, context, executor, make_file, policy_factory):
        policy = policy_factory("p", "/user/raidtest")
        with_policies(context, policy)
        populate(make_file, 3)
        monitor = TriggerMonitor(context, LocalJobRunner(executor))

        monitor.do_process()

        for i in range(3):
            assert context.fs.get_file_status(f"/user/raidtest/file{i:03d}").replication == 1
            assert context.fs.exists(f"/raid/user/raidtest/file{i:03d}")
        # Nothing left to select until the period elapses
        assert not monitor.should_select_files(policy)

    @pytest.mark.asyncio
    async def test_run_stops_on_event(self, context, job_runner, policy_factory):
        with_policies(context, policy_factory("p", "/user/raidtest"))
        monitor = TriggerMonitor(context, job_runner)

        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)
        context.stop_event.set()
        await asyncio.wait_for(task, timeout=2)

        assert task.done()


def wait_for_jobs(runner, policy_name, expected, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if runner.get_running_jobs_for_policy(policy_name) == expected:
            return True
        time.sleep(0.01)
    return False


class TestJobCapWithThreadPool:
    @pytest.fixture
    def gated(self, context, executor, make_file, policy_factory):
        context.config.max_files_per_job = 2
        policy = policy_factory("p", "/user/raidtest")
        with_policies(context, policy)
        populate(make_file, 10)
        runner = ThreadPoolJobRunner(executor, max_workers=4)
        gate = threading.Event()
        seen = []

        def slow_raid(info, paths):
            seen.append(runner.get_running_jobs_for_policy(info.name))
            if not gate.wait(5):
                raise RuntimeError("gate never opened")
            return len(paths)

        with patch.object(executor, "raid_files", side_effect=slow_raid) as raid_files:
            yield TriggerMonitor(context, runner), runner, gate, seen, raid_files
        gate.set()
        runner.shutdown()

    def test_cap_holds_across_sweeps(self, gated):
        monitor, runner, gate, seen, raid_files = gated

        for _ in range(5):
            monitor.do_process()
            assert runner.get_running_jobs_for_policy("p") <= 2

        assert runner.get_running_jobs_for_policy("p") == 2
        assert raid_files.call_count <= 2
        assert monitor.get_policy_state("p").is_scan_in_progress()

        gate.set()
        assert wait_for_jobs(runner, "p", 0)
        assert max(seen) <= 2

        # The scan resumes once the finished jobs free their slots
        deadline = time.monotonic() + 5
        while monitor.get_policy_state("p").is_scan_in_progress():
            assert time.monotonic() < deadline
            monitor.do_process()
            assert runner.get_running_jobs_for_policy("p") <= 2
            time.sleep(0.01)
        assert wait_for_jobs(runner, "p", 0)
        assert raid_files.call_count == 5
        assert not monitor.get_policy_state("p").is_scan_in_progress()

    def test_failed_jobs_release_their_slots(self, gated):
        monitor, runner, gate, seen, raid_files = gated
        raid_files.side_effect = IOError("datanode went away")

        monitor.do_process()
        assert wait_for_jobs(runner, "p", 0)
        monitor.do_process()
        assert wait_for_jobs(runner, "p", 0)

        assert raid_files.call_count == 2


class TestSeparateParityFileSystem:
    def test_raided_files_not_selected_again(self, context, make_file, policy_factory,
                                             metrics):
        parity_fs = MemoryFileSystem(default_block_size=BLOCK_SIZE)
        context.parity_fs = parity_fs
        policy = policy_factory("p", "/user/raidtest")
        with_policies(context, policy)
        populate(make_file, 2)
        executor = RaidExecutor(context.fs, context.codecs, context.erasure_codes,
                                statistics=context.statistics, metrics=metrics,
                                parity_fs=parity_fs)
        monitor = TriggerMonitor(context, LocalJobRunner(executor))

        monitor.do_process()

        assert parity_fs.exists("/raid/user/raidtest/file000")
        assert not context.fs.exists("/raid/user/raidtest/file000")
        monitor.get_policy_state("p").start_time = 0
        assert monitor.select_files(policy, [policy]) == []
