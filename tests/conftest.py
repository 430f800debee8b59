"""Global test configuration and fixtures."""
import pytest
from prometheus_client import CollectorRegistry

from raidnode.config import PolicyCatalog, load_raid_config
from raidnode.models import PolicyInfo
from raidnode.monitoring import RaidMetrics
from raidnode.raid.codec import CodecRegistry
from raidnode.raid.context import RaidContext
from raidnode.raid.erasure import Decoder, Encoder, ErasureCodeRegistry
from raidnode.storage import MemoryFileSystem
from raidnode.storage.paths import ceil_div, now_ms

BLOCK_SIZE = 1024
DAY_MS = 24 * 3600 * 1000

XOR_CODE = "org.apache.hadoop.raid.XorCode"
RS_CODE = "org.apache.hadoop.raid.ReedSolomonCode"

# Same layout as the codecs written by existing cluster configs
CODECS_JSON = """
[
  {
    "id"            : "xor",
    "parity_dir"    : "/raid",
    "tmp_parity_dir": "/tmp/raid",
    "tmp_har_dir"   : "/tmp/raid_har",
    "stripe_length" : 5,
    "parity_length" : 1,
    "priority"      : 100,
    "erasure_code"  : "org.apache.hadoop.raid.XorCode",
    "description"   : "XorCode code",
  },
  {
    "id"            : "rs",
    "parity_dir"    : "/raidrs",
    "tmp_parity_dir": "/tmp/raidrs",
    "tmp_har_dir"   : "/tmp/raidrs_har",
    "stripe_length" : 5,
    "parity_length" : 3,
    "priority"      : 300,
    "erasure_code"  : "org.apache.hadoop.raid.ReedSolomonCode",
    "description"   : "ReedSolomonCode code",
  },
]
"""


class FakeEncoder(Encoder):
    """Writes one byte per parity block and records every call"""

    def __init__(self, codec, calls):
        super().__init__(codec)
        self.calls = calls

    def encode_file(self, src_fs, src_path, parity_fs, parity_path, meta_replication):
        self.calls.append((self.codec.id, src_path, parity_path))
        stat = src_fs.get_file_status(src_path)
        stripes = ceil_div(ceil_div(stat.length, stat.block_size), self.codec.stripe_length)
        out = parity_fs.create(parity_path, replication=meta_replication,
                               block_size=stat.block_size)
        out.write(b"P" * stripes * self.codec.parity_length)
        out.close()


class CopyingDecoder(Decoder):
    """Reconstructs a block by reading it back from the source"""

    def fix_erased_block(self, src_fs, src_path, parity_fs, parity_path,
                         block_size, corrupt_offset, limit, out):
        with src_fs.open(src_path) as f:
            f.seek(corrupt_offset)
            out.write(f.read(limit))


@pytest.fixture
def fs():
    """In-memory filesystem with tiny blocks"""
    return MemoryFileSystem(default_block_size=BLOCK_SIZE, default_replication=3)


@pytest.fixture
def make_file(fs):
    """Create a source file of a given number of blocks"""
    def _make(path, blocks, replication=3, age_ms=DAY_MS, extra=0):
        return fs.write_file(path, b"x" * (blocks * BLOCK_SIZE + extra),
                             replication=replication, block_size=BLOCK_SIZE,
                             mtime=now_ms() - age_ms)
    return _make


@pytest.fixture
def codecs():
    return CodecRegistry.from_json(CODECS_JSON)


@pytest.fixture
def encode_calls():
    return []


@pytest.fixture
def erasure_codes(encode_calls):
    registry = ErasureCodeRegistry()
    for name in (XOR_CODE, RS_CODE):
        registry.register(name, lambda c: FakeEncoder(c, encode_calls), CopyingDecoder)
    return registry


@pytest.fixture
def config():
    return load_raid_config({
        "raid.server.address": "127.0.0.1:0",
        "raid.directorytraversal.shuffle": False,
        "raid.directorytraversal.threads": 2,
        "raid.policy.rescan.interval": 3600,
        "raid.distraid.max.jobs": 2,
        "raid.distraid.max.files": 100,
        "raid.config.reload": False,
        "raid.trigger.sleep.seconds": 0.01,
        "raid.blockfix.interval.seconds": 0.01,
        "raid.purge.interval.seconds": 0.01,
        "raid.stats.interval.seconds": 0.01,
        "hdfs.raid.local.recovery.location": "/tmp/raidrecovery",
        "raid.classname": "local",
    })


@pytest.fixture
def metrics():
    """Metrics on a private registry so tests never collide"""
    return RaidMetrics(CollectorRegistry())


def make_policy(name, src, codec_id="xor", target_replication=1, meta_replication=1,
                file_list=None, should_raid=True, mod_time_period=0, simulate=False):
    src_paths = (src,) if isinstance(src, str) else tuple(src)
    return PolicyInfo(
        name=name,
        src_paths=src_paths,
        codec_id=codec_id,
        properties={
            "targetReplication": str(target_replication),
            "metaReplication": str(meta_replication),
            "modTimePeriod": str(mod_time_period),
            "simulate": "true" if simulate else "false",
        },
        file_list_path=file_list,
        should_raid=should_raid,
    )


@pytest.fixture
def policy_factory():
    return make_policy


@pytest.fixture
def catalog(config, codecs):
    return PolicyCatalog(config, codecs, policies=[])


@pytest.fixture
def context(config, catalog, codecs, erasure_codes, fs, metrics):
    return RaidContext(
        config=config,
        catalog=catalog,
        codecs=codecs,
        erasure_codes=erasure_codes,
        fs=fs,
        metrics=metrics,
    )
