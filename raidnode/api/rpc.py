"""
HTTP transport for the RaidProtocol.
"""
import asyncio
import json
import logging
from typing import Any, Dict

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..errors import NotSupported, RaidError
from ..models import PolicyInfo

logger = logging.getLogger(__name__)

RAID_PROTOCOL = "RaidProtocol"


def policy_to_dict(policy: PolicyInfo) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "name": policy.name,
        "srcPath": list(policy.src_paths),
        "codecId": policy.codec_id,
        "shouldRaid": policy.should_raid,
        "properties": dict(policy.properties),
    }
    if policy.file_list_path is not None:
        record["fileList"] = policy.file_list_path
    return record


class RaidRpcHandlers:
    """Request handlers bound to a running RaidNode"""

    def __init__(self, node):
        self.node = node

    async def get_all_policies(self, request: web.Request) -> web.Response:
        policies = self.node.get_all_policies()
        return web.json_response([policy_to_dict(p) for p in policies])

    async def recover_file(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
            path = str(body["path"])
            corrupt_offset = int(body["corruptOffset"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return web.Response(status=400, text="Expected JSON with path and corruptOffset")

        loop = asyncio.get_running_loop()
        try:
            recovered = await loop.run_in_executor(
                self.node.rpc_executor, self.node.recover_file, path, corrupt_offset
            )
        except NotSupported as e:
            return web.Response(status=501, text=e.message)
        except RaidError as e:
            logger.error(f"Recovery of {path} at offset {corrupt_offset} failed: {e.message}")
            return web.json_response({"error": e.code, "message": e.message}, status=500)
        return web.json_response({"path": recovered})

    async def get_protocol_version(self, request: web.Request) -> web.Response:
        protocol = request.query.get("protocol", "")
        try:
            client_version = int(request.query.get("clientVersion", "0"))
        except ValueError:
            return web.Response(status=400, text="clientVersion must be an integer")
        try:
            version = self.node.get_protocol_version(protocol, client_version)
        except NotSupported as e:
            return web.Response(status=400, text=e.message)
        return web.json_response({"version": version})

    async def get_protocol_signature(self, request: web.Request) -> web.Response:
        protocol = request.query.get("protocol", RAID_PROTOCOL)
        try:
            client_version = int(request.query.get("clientVersion", "0"))
        except ValueError:
            return web.Response(status=400, text="clientVersion must be an integer")
        try:
            signature = self.node.get_protocol_signature(protocol, client_version)
        except NotSupported as e:
            return web.Response(status=400, text=e.message)
        return web.json_response(signature)

    async def health_check(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "running" if self.node.running else "stopping",
            "statistics": self.node.context.statistics.to_dict(),
        })

    async def metrics(self, request: web.Request) -> web.Response:
        body = generate_latest(self.node.context.metrics.registry)
        return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE_LATEST})


def create_rpc_app(node) -> web.Application:
    """Build the aiohttp application serving the RaidProtocol for node"""
    handlers = RaidRpcHandlers(node)
    app = web.Application()
    app.add_routes([
        web.get('/policies', handlers.get_all_policies),
        web.post('/recover', handlers.recover_file),
        web.get('/protocol/version', handlers.get_protocol_version),
        web.get('/protocol/signature', handlers.get_protocol_signature),
        web.get('/health', handlers.health_check),
        web.get('/metrics', handlers.metrics),
    ])
    return app
