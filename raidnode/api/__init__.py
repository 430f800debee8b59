from .rpc import RAID_PROTOCOL, create_rpc_app, policy_to_dict

__all__ = ["RAID_PROTOCOL", "create_rpc_app", "policy_to_dict"]
