"""Unit tests for configuration, codec registry and policy catalog."""
import json
import os
import time
from unittest.mock import patch

import pytest

from raidnode.config import PolicyCatalog, load_raid_config, policy_from_dict
from raidnode.config.raid_config import env_name
from raidnode.errors import RaidConfigurationError
from raidnode.raid.codec import CodecRegistry


class TestRaidConfig:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = load_raid_config(dotenv_path="/nonexistent/.env")
        assert config.server_address == "localhost:60000"
        assert config.server_port == 60000
        assert config.handler_count == 10
        assert config.traversal_shuffle is True
        assert config.traversal_threads == 4
        assert config.recovery_location == "/tmp/raidrecovery"
        assert config.har_threshold_days == 3
        assert config.disable_corrupt_block_fixer is False
        assert config.raidnode_classname == "local"
        assert config.fs_root is None
        assert config.parity_fs_root is None
        assert config.job_runner_threads == 4

    def test_filesystem_roots_from_environment(self, tmp_path):
        env = {"RAID_FS_ROOT": str(tmp_path / "data"),
               "RAID_PARITY_FS_ROOT": str(tmp_path / "parity"),
               "RAID_JOBRUNNER_THREADS": "6"}
        with patch.dict(os.environ, env, clear=True):
            config = load_raid_config(dotenv_path="/nonexistent/.env")
        assert config.fs_root == str(tmp_path / "data")
        assert config.parity_fs_root == str(tmp_path / "parity")
        assert config.job_runner_threads == 6

    def test_environment_overrides_defaults(self):
        env = {env_name("raid.directorytraversal.threads"): "8"}
        with patch.dict(os.environ, env, clear=True):
            config = load_raid_config(dotenv_path="/nonexistent/.env")
        assert env_name("raid.server.address") == "RAID_SERVER_ADDRESS"
        assert config.traversal_threads == 8

    def test_properties_override_environment(self):
        env = {"RAID_PARITY_HAR_THRESHOLD_DAYS": "7"}
        with patch.dict(os.environ, env, clear=True):
            config = load_raid_config({"raid.parity.har.threshold.days": 1},
                                      dotenv_path="/nonexistent/.env")
        assert config.har_threshold_days == 1

    def test_invalid_values_raise(self):
        with pytest.raises(RaidConfigurationError):
            load_raid_config({"raid.directorytraversal.threads": "many"})
        with pytest.raises(RaidConfigurationError):
            load_raid_config({"raid.directorytraversal.shuffle": "maybe"})


class TestCodecRegistry:
    def test_codecs_sorted_by_priority(self, codecs):
        assert [c.id for c in codecs.get_codecs()] == ["rs", "xor"]
        xor = codecs.get_codec("xor")
        assert xor.parity_directory == "/raid"
        assert xor.stripe_length == 5
        assert xor.parity_length == 1
        assert codecs.get_codec("rs").parity_length == 3

    def test_unknown_codec(self, codecs):
        with pytest.raises(RaidConfigurationError):
            codecs.get_codec("lrc")

    def test_missing_fields_rejected(self):
        with pytest.raises(RaidConfigurationError):
            CodecRegistry.from_json('[{"id": "xor"}]')

    def test_malformed_json_rejected(self):
        with pytest.raises(RaidConfigurationError):
            CodecRegistry.from_json("[{")


def write_catalog(path, policies):
    with open(path, "w") as f:
        json.dump({"policies": policies}, f)


POLICY = {
    "name": "RaidTest1",
    "srcPath": "/user/dhruba/raidtest",
    "codecId": "xor",
    "properties": {"targetReplication": 1, "metaReplication": 2, "modTimePeriod": 0},
}


class TestPolicyCatalog:
    def test_policy_from_dict(self):
        policy = policy_from_dict(POLICY)
        assert policy.src_paths == ("/user/dhruba/raidtest",)
        assert policy.target_replication == 1
        assert policy.meta_replication == 2
        assert policy.should_raid is True
        assert policy.simulate is False

    def test_policy_requires_replication(self):
        record = dict(POLICY, properties={"metaReplication": 2})
        with pytest.raises(RaidConfigurationError):
            policy_from_dict(record)

    def test_load_from_file(self, tmp_path, codecs):
        path = tmp_path / "raid.json"
        write_catalog(path, [POLICY])
        config = load_raid_config({"raid.config.file": str(path)})
        catalog = PolicyCatalog(config, codecs)
        assert [p.name for p in catalog.get_all_policies()] == ["RaidTest1"]

    def test_unknown_codec_rejected(self, tmp_path, codecs):
        path = tmp_path / "raid.json"
        write_catalog(path, [dict(POLICY, codecId="lrc")])
        config = load_raid_config({"raid.config.file": str(path)})
        with pytest.raises(RaidConfigurationError):
            PolicyCatalog(config, codecs)

    def test_duplicate_names_rejected(self, config, codecs):
        policy = policy_from_dict(POLICY)
        with pytest.raises(RaidConfigurationError):
            PolicyCatalog(config, codecs, policies=[policy, policy])

    def test_reload_replaces_policies(self, tmp_path, codecs):
        path = tmp_path / "raid.json"
        write_catalog(path, [POLICY])
        config = load_raid_config({
            "raid.config.file": str(path),
            "raid.config.reload.interval": 0,
        })
        catalog = PolicyCatalog(config, codecs)
        before = catalog.get_all_policies()

        write_catalog(path, [POLICY, dict(POLICY, name="RaidTest2")])
        os.utime(path, (time.time() + 5, time.time() + 5))

        assert catalog.reload_configs_if_necessary() is True
        assert [p.name for p in catalog.get_all_policies()] == ["RaidTest1", "RaidTest2"]
        # Earlier snapshots are not mutated
        assert [p.name for p in before] == ["RaidTest1"]

    def test_failed_reload_keeps_previous(self, tmp_path, codecs):
        path = tmp_path / "raid.json"
        write_catalog(path, [POLICY])
        config = load_raid_config({
            "raid.config.file": str(path),
            "raid.config.reload.interval": 0,
        })
        catalog = PolicyCatalog(config, codecs)

        path.write_text("{not json")
        os.utime(path, (time.time() + 5, time.time() + 5))

        assert catalog.reload_configs_if_necessary() is False
        assert [p.name for p in catalog.get_all_policies()] == ["RaidTest1"]
