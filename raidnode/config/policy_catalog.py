"""
Policy catalog: the set of RAID policies plus the tunables that drive them.
"""
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

from ..errors import RaidConfigurationError
from ..models import META_REPLICATION, TARGET_REPLICATION, PolicyInfo
from .raid_config import RaidConfig


def policy_from_dict(record: Dict[str, Any]) -> PolicyInfo:
    """Build a PolicyInfo from one catalog record"""
    if "name" not in record or "codecId" not in record:
        raise RaidConfigurationError(f"Policy record needs name and codecId: {record}")
    src = record.get("srcPath", [])
    src_paths = (src,) if isinstance(src, str) else tuple(src)
    file_list = record.get("fileList")
    if not src_paths and not file_list:
        raise RaidConfigurationError(
            f"Policy {record['name']} needs a srcPath or a fileList"
        )
    properties = {str(k): str(v) for k, v in record.get("properties", {}).items()}
    for key in (TARGET_REPLICATION, META_REPLICATION):
        try:
            int(properties[key])
        except (KeyError, ValueError):
            raise RaidConfigurationError(
                f"Policy {record['name']} needs an integer {key} property"
            )
    return PolicyInfo(
        name=str(record["name"]),
        src_paths=src_paths,
        codec_id=str(record["codecId"]),
        properties=properties,
        file_list_path=file_list,
        should_raid=bool(record.get("shouldRaid", True)),
    )


class PolicyCatalog:
    """Read accessor for policies and tunables, with periodic reload"""

    def __init__(self, config: RaidConfig, codecs=None,
                 policies: Optional[List[PolicyInfo]] = None):
        self.config = config
        self.codecs = codecs
        self.logger = logging.getLogger(__name__)
        self._policies: List[PolicyInfo] = []
        self._last_mtime: Optional[float] = None
        self._last_reload_check = time.time()

        if policies is not None:
            self._policies = self._validate(list(policies))
        elif config.config_file:
            self._policies = self._load(config.config_file)

    def _validate(self, policies: List[PolicyInfo]) -> List[PolicyInfo]:
        names = set()
        for policy in policies:
            if policy.name in names:
                raise RaidConfigurationError(f"Duplicate policy name {policy.name}")
            names.add(policy.name)
            if self.codecs is not None and not self.codecs.has_codec(policy.codec_id):
                raise RaidConfigurationError(
                    f"Policy {policy.name} refers to unknown codec {policy.codec_id}"
                )
        return policies

    def _load(self, path: str) -> List[PolicyInfo]:
        mtime = os.path.getmtime(path)
        try:
            with open(path) as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise RaidConfigurationError(f"Malformed policy file {path}: {e}")
        records = document.get("policies", []) if isinstance(document, dict) else document
        policies = self._validate([policy_from_dict(r) for r in records])
        self._last_mtime = mtime
        self.logger.info(f"Loaded {len(policies)} policies from {path}")
        return policies

    def reload_configs_if_necessary(self) -> bool:
        """Reload the policy file if it changed. Returns True on reload."""
        path = self.config.config_file
        if not self.config.config_reload or not path:
            return False
        now = time.time()
        if now < self._last_reload_check + self.config.config_reload_interval:
            return False
        self._last_reload_check = now
        try:
            if os.path.getmtime(path) == self._last_mtime:
                return False
            # Swap the whole list so readers never see a partial catalog
            self._policies = self._load(path)
        except (OSError, RaidConfigurationError) as e:
            self.logger.error(f"Failed to reload policy file {path}, keeping previous policies: {e}")
            return False
        return True

    def get_all_policies(self) -> List[PolicyInfo]:
        return list(self._policies)

    def get_periodicity(self) -> float:
        return self.config.periodicity

    def get_max_jobs_per_policy(self) -> int:
        return self.config.max_jobs_per_policy

    def get_max_files_per_job(self) -> int:
        return self.config.max_files_per_job

    def get_har_partfile_size(self) -> int:
        return self.config.har_partfile_size
