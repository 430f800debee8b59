"""RaidNode configuration management."""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from ..errors import RaidConfigurationError

# Configuration keys
RAID_SERVER_ADDRESS_KEY = "raid.server.address"
RAID_HANDLER_COUNT_KEY = "fs.raidnode.handler.count"
RAID_DIRECTORYTRAVERSAL_SHUFFLE = "raid.directorytraversal.shuffle"
RAID_DIRECTORYTRAVERSAL_THREADS = "raid.directorytraversal.threads"
RAID_RECOVERY_LOCATION_KEY = "hdfs.raid.local.recovery.location"
RAID_PARITY_HAR_THRESHOLD_DAYS_KEY = "raid.parity.har.threshold.days"
RAID_DISABLE_CORRUPT_BLOCK_FIXER_KEY = "raid.blockreconstruction.corrupt.disable"
RAID_DISABLE_DECOMMISSIONING_BLOCK_COPIER_KEY = "raid.blockreconstruction.decommissioning.disable"
RAIDNODE_CLASSNAME_KEY = "raid.classname"
RAID_CONFIG_FILE_KEY = "raid.config.file"
RAID_CODECS_JSON_KEY = "raid.codecs.json"
RAID_PERIODICITY_KEY = "raid.policy.rescan.interval"
RAID_MAX_JOBS_PER_POLICY_KEY = "raid.distraid.max.jobs"
RAID_MAX_FILES_PER_JOB_KEY = "raid.distraid.max.files"
RAID_HAR_PARTFILE_SIZE_KEY = "raid.har.partfile.size"
RAID_CONFIG_RELOAD_KEY = "raid.config.reload"
RAID_CONFIG_RELOAD_INTERVAL_KEY = "raid.config.reload.interval"
RAID_TRIGGER_SLEEP_KEY = "raid.trigger.sleep.seconds"
RAID_BLOCKFIX_INTERVAL_KEY = "raid.blockfix.interval.seconds"
RAID_PURGE_INTERVAL_KEY = "raid.purge.interval.seconds"
RAID_STATS_INTERVAL_KEY = "raid.stats.interval.seconds"
RAID_HAR_COMMAND_KEY = "raid.har.command"
RAID_LOG_LEVEL_KEY = "raid.log.level"
RAID_FS_ROOT_KEY = "raid.fs.root"
RAID_PARITY_FS_ROOT_KEY = "raid.parity.fs.root"
RAID_JOB_RUNNER_THREADS_KEY = "raid.jobrunner.threads"

DEFAULT_PORT = 60000
DEFAULT_RECOVERY_LOCATION = "/tmp/raidrecovery"
DEFAULT_RAID_PARITY_HAR_THRESHOLD_DAYS = 3
SLEEP_TIME = 10.0  # seconds

DEFAULTS: Dict[str, Any] = {
    RAID_SERVER_ADDRESS_KEY: f"localhost:{DEFAULT_PORT}",
    RAID_HANDLER_COUNT_KEY: 10,
    RAID_DIRECTORYTRAVERSAL_SHUFFLE: True,
    RAID_DIRECTORYTRAVERSAL_THREADS: 4,
    RAID_RECOVERY_LOCATION_KEY: DEFAULT_RECOVERY_LOCATION,
    RAID_PARITY_HAR_THRESHOLD_DAYS_KEY: DEFAULT_RAID_PARITY_HAR_THRESHOLD_DAYS,
    RAID_DISABLE_CORRUPT_BLOCK_FIXER_KEY: False,
    RAID_DISABLE_DECOMMISSIONING_BLOCK_COPIER_KEY: False,
    RAIDNODE_CLASSNAME_KEY: "local",
    RAID_CONFIG_FILE_KEY: None,
    RAID_CODECS_JSON_KEY: None,
    RAID_PERIODICITY_KEY: 3600.0,
    RAID_MAX_JOBS_PER_POLICY_KEY: 10,
    RAID_MAX_FILES_PER_JOB_KEY: 10000,
    RAID_HAR_PARTFILE_SIZE_KEY: 4 * 1024 * 1024 * 1024,
    RAID_CONFIG_RELOAD_KEY: True,
    RAID_CONFIG_RELOAD_INTERVAL_KEY: 10.0,
    RAID_TRIGGER_SLEEP_KEY: SLEEP_TIME,
    RAID_BLOCKFIX_INTERVAL_KEY: 60.0,
    RAID_PURGE_INTERVAL_KEY: 3600.0,
    RAID_STATS_INTERVAL_KEY: 60.0,
    RAID_HAR_COMMAND_KEY: "hadoop",
    RAID_LOG_LEVEL_KEY: "INFO",
    RAID_FS_ROOT_KEY: None,
    RAID_PARITY_FS_ROOT_KEY: None,
    RAID_JOB_RUNNER_THREADS_KEY: 4,
}


@dataclass
class RaidConfig:
    server_address: str
    handler_count: int
    traversal_shuffle: bool
    traversal_threads: int
    recovery_location: str
    har_threshold_days: int
    disable_corrupt_block_fixer: bool
    disable_decommissioning_block_copier: bool
    raidnode_classname: str
    config_file: Optional[str]
    codecs_json: Optional[str]
    periodicity: float
    max_jobs_per_policy: int
    max_files_per_job: int
    har_partfile_size: int
    config_reload: bool
    config_reload_interval: float
    trigger_sleep_time: float
    blockfix_interval: float
    purge_interval: float
    stats_interval: float
    har_command: str
    log_level: str
    fs_root: Optional[str] = None
    parity_fs_root: Optional[str] = None
    job_runner_threads: int = 4

    @property
    def server_host(self) -> str:
        return self.server_address.rsplit(":", 1)[0] or "localhost"

    @property
    def server_port(self) -> int:
        if ":" not in self.server_address:
            return DEFAULT_PORT
        return int(self.server_address.rsplit(":", 1)[1])


def env_name(key: str) -> str:
    """Environment variable carrying a dotted configuration key."""
    return key.upper().replace(".", "_")


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise RaidConfigurationError(f"Invalid boolean for {key}: {value!r}")


def _to_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RaidConfigurationError(f"Invalid integer for {key}: {value!r}")


def _to_float(key: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise RaidConfigurationError(f"Invalid number for {key}: {value!r}")


def load_raid_config(properties: Optional[Dict[str, Any]] = None,
                     dotenv_path: Optional[str] = None) -> RaidConfig:
    """Load configuration from defaults, .env, environment and overrides."""
    load_dotenv(dotenv_path=dotenv_path)
    properties = properties or {}

    def get(key: str) -> Any:
        if key in properties:
            return properties[key]
        return os.getenv(env_name(key), DEFAULTS[key])

    return RaidConfig(
        server_address=str(get(RAID_SERVER_ADDRESS_KEY)),
        handler_count=_to_int(RAID_HANDLER_COUNT_KEY, get(RAID_HANDLER_COUNT_KEY)),
        traversal_shuffle=_to_bool(
            RAID_DIRECTORYTRAVERSAL_SHUFFLE, get(RAID_DIRECTORYTRAVERSAL_SHUFFLE)
        ),
        traversal_threads=_to_int(
            RAID_DIRECTORYTRAVERSAL_THREADS, get(RAID_DIRECTORYTRAVERSAL_THREADS)
        ),
        recovery_location=str(get(RAID_RECOVERY_LOCATION_KEY)),
        har_threshold_days=_to_int(
            RAID_PARITY_HAR_THRESHOLD_DAYS_KEY, get(RAID_PARITY_HAR_THRESHOLD_DAYS_KEY)
        ),
        disable_corrupt_block_fixer=_to_bool(
            RAID_DISABLE_CORRUPT_BLOCK_FIXER_KEY, get(RAID_DISABLE_CORRUPT_BLOCK_FIXER_KEY)
        ),
        disable_decommissioning_block_copier=_to_bool(
            RAID_DISABLE_DECOMMISSIONING_BLOCK_COPIER_KEY,
            get(RAID_DISABLE_DECOMMISSIONING_BLOCK_COPIER_KEY)
        ),
        raidnode_classname=str(get(RAIDNODE_CLASSNAME_KEY)),
        config_file=get(RAID_CONFIG_FILE_KEY),
        codecs_json=get(RAID_CODECS_JSON_KEY),
        periodicity=_to_float(RAID_PERIODICITY_KEY, get(RAID_PERIODICITY_KEY)),
        max_jobs_per_policy=_to_int(
            RAID_MAX_JOBS_PER_POLICY_KEY, get(RAID_MAX_JOBS_PER_POLICY_KEY)
        ),
        max_files_per_job=_to_int(RAID_MAX_FILES_PER_JOB_KEY, get(RAID_MAX_FILES_PER_JOB_KEY)),
        har_partfile_size=_to_int(RAID_HAR_PARTFILE_SIZE_KEY, get(RAID_HAR_PARTFILE_SIZE_KEY)),
        config_reload=_to_bool(RAID_CONFIG_RELOAD_KEY, get(RAID_CONFIG_RELOAD_KEY)),
        config_reload_interval=_to_float(
            RAID_CONFIG_RELOAD_INTERVAL_KEY, get(RAID_CONFIG_RELOAD_INTERVAL_KEY)
        ),
        trigger_sleep_time=_to_float(RAID_TRIGGER_SLEEP_KEY, get(RAID_TRIGGER_SLEEP_KEY)),
        blockfix_interval=_to_float(RAID_BLOCKFIX_INTERVAL_KEY, get(RAID_BLOCKFIX_INTERVAL_KEY)),
        purge_interval=_to_float(RAID_PURGE_INTERVAL_KEY, get(RAID_PURGE_INTERVAL_KEY)),
        stats_interval=_to_float(RAID_STATS_INTERVAL_KEY, get(RAID_STATS_INTERVAL_KEY)),
        har_command=str(get(RAID_HAR_COMMAND_KEY)),
        log_level=str(get(RAID_LOG_LEVEL_KEY)).upper(),
        fs_root=get(RAID_FS_ROOT_KEY) or None,
        parity_fs_root=get(RAID_PARITY_FS_ROOT_KEY) or None,
        job_runner_threads=_to_int(
            RAID_JOB_RUNNER_THREADS_KEY, get(RAID_JOB_RUNNER_THREADS_KEY)
        ),
    )
