"""Configuration for the RaidNode daemon."""

from .raid_config import RaidConfig, load_raid_config
from .policy_catalog import PolicyCatalog, policy_from_dict

__all__ = ["RaidConfig", "load_raid_config", "PolicyCatalog", "policy_from_dict"]
