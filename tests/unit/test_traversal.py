"""Unit tests for directory traversal and the raid file filter."""
import random
from unittest.mock import patch

import pytest

from raidnode.raid.traversal import (
    FINISH_TOKEN,
    DirectoryTraversal,
    RaidFileFilter,
    path_matches_expression,
)
from raidnode.storage import MemoryFileSystem


@pytest.fixture
def tree():
    fs = MemoryFileSystem(default_block_size=10)
    for d in range(4):
        for f in range(5):
            fs.write_file(f"/data/dir{d}/file{f}", b"x")
        fs.write_file(f"/data/dir{d}/nested/deep", b"x")
    fs.write_file("/data/top", b"x")
    return fs


def drain(traversal, limit=None):
    out = []
    while limit is None or len(out) < limit:
        f = traversal.next()
        if f is FINISH_TOKEN:
            break
        out.append(f.path)
    return out


class TestDirectoryTraversal:
    def test_full_enumeration(self, tree):
        roots = [tree.get_file_status("/data")]
        traversal = DirectoryTraversal.file_retriever("all", tree, roots, num_threads=3)
        paths = drain(traversal)
        assert len(paths) == 4 * 6 + 1
        assert len(set(paths)) == len(paths)
        assert traversal.finished
        assert traversal.next() is FINISH_TOKEN

    @pytest.mark.parametrize("shuffle", [False, True])
    def test_resumed_walk_equals_full_walk(self, tree, shuffle):
        roots = [tree.get_file_status("/data")]
        full = drain(DirectoryTraversal(
            "full", tree, roots, num_threads=2, shuffle=shuffle, rng=random.Random(7)
        ))

        paused = DirectoryTraversal(
            "paused", tree, roots, num_threads=2, shuffle=shuffle, rng=random.Random(7)
        )
        pieces = []
        while not paused.finished:
            pieces.extend(drain(paused, limit=4))

        assert pieces == full

    def test_file_roots_are_returned(self, tree):
        roots = [tree.get_file_status("/data/top"), tree.get_file_status("/data/dir0/nested")]
        assert sorted(drain(DirectoryTraversal.file_retriever("r", tree, roots))) == [
            "/data/dir0/nested/deep", "/data/top"
        ]

    def test_listing_errors_skip_directory(self, tree):
        roots = [tree.get_file_status("/data")]
        original = tree.list_status

        def flaky(path):
            if path == "/data/dir1":
                raise OSError("datanode unreachable")
            return original(path)

        with patch.object(tree, "list_status", side_effect=flaky):
            paths = drain(DirectoryTraversal.file_retriever("r", tree, roots))
        assert not any(p.startswith("/data/dir1/") for p in paths)
        assert "/data/dir2/file0" in paths

    def test_filter_applied(self, tree):
        roots = [tree.get_file_status("/data")]
        traversal = DirectoryTraversal("f", tree, roots, lambda s: s.name == "deep")
        assert len(drain(traversal)) == 4


class TestPathMatching:
    def test_prefix_match(self):
        assert path_matches_expression("/user/foo/a/b", "/user/foo")
        assert path_matches_expression("/user/foo/a", "/user/*")
        assert not path_matches_expression("/user/bar/a", "/user/foo")
        assert not path_matches_expression("/user", "/user/foo")


class TestRaidFileFilter:
    def test_small_files_rejected(self, fs, codecs, make_file, policy_factory):
        policy = policy_factory("p", "/user")
        file_filter = RaidFileFilter(policy, [policy], fs, codecs)
        assert not file_filter(make_file("/user/small", 2))
        assert file_filter(make_file("/user/big", 3))

    def test_recent_files_rejected(self, fs, codecs, make_file, policy_factory):
        policy = policy_factory("p", "/user", mod_time_period=3600 * 1000)
        file_filter = RaidFileFilter(policy, [policy], fs, codecs)
        assert not file_filter(make_file("/user/fresh", 5, age_ms=1000))
        assert file_filter(make_file("/user/old", 5, age_ms=7200 * 1000))

    def test_claimed_by_higher_priority_policy(self, fs, codecs, make_file, policy_factory):
        xor_policy = policy_factory("xor", "/user", codec_id="xor")
        rs_policy = policy_factory("rs", "/user/important", codec_id="rs")
        file_filter = RaidFileFilter(xor_policy, [xor_policy, rs_policy], fs, codecs)
        assert not file_filter(make_file("/user/important/f", 5))
        assert file_filter(make_file("/user/other/f", 5))

    def test_already_raided(self, fs, codecs, make_file, policy_factory):
        policy = policy_factory("p", "/user", target_replication=1)
        file_filter = RaidFileFilter(policy, [policy], fs, codecs)
        stat = make_file("/user/f", 5, replication=1)
        fs.write_file("/raid/user/f", b"P", mtime=stat.modification_time)
        assert not file_filter(stat)

        # Valid parity but replication still above target
        stat = make_file("/user/g", 5, replication=3)
        fs.write_file("/raid/user/g", b"P", mtime=stat.modification_time)
        assert file_filter(stat)

    def test_stale_parity_needs_raiding(self, fs, codecs, make_file, policy_factory):
        policy = policy_factory("p", "/user", target_replication=1)
        file_filter = RaidFileFilter(policy, [policy], fs, codecs)
        stat = make_file("/user/f", 5, replication=1)
        fs.write_file("/raid/user/f", b"P", mtime=stat.modification_time - 1)
        assert file_filter(stat)

    def test_higher_priority_parity_wins(self, fs, codecs, make_file, policy_factory):
        policy = policy_factory("p", "/user", codec_id="xor")
        file_filter = RaidFileFilter(policy, [policy], fs, codecs)
        stat = make_file("/user/f", 5)
        fs.write_file("/raidrs/user/f", b"P", mtime=stat.modification_time)
        assert not file_filter(stat)
