"""HTTP API of the orchestrator: shard registration, lookup and on-demand provisioning."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from aiohttp import web

from voxorch.persistence import LaunchConfig
from voxorch.provisioner import ProvisionError, ShardProvisioner
from voxorch.registry import ShardRegistry
from voxorch.shard_types import ShardInfo, ShardState, ShardType

logger = logging.getLogger(__name__)

_U64_LIMIT = 1 << 64
_U32_LIMIT = 1 << 32
_DEFAULT_READY_TIMEOUT = 30.0
_POLL_INTERVAL = 0.5


async def wait_for_shard_ready(
    registry: ShardRegistry,
    shard_id: int,
    timeout: float,
    poll_interval: float = _POLL_INTERVAL,
) -> ShardInfo | None:
    """Poll the registry until the shard is Ready; ``None`` once ``timeout`` expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if loop.time() >= deadline:
            return None
        entry = registry.get(shard_id)
        if entry is not None and entry.info.state is ShardState.READY:
            return entry.info
        await asyncio.sleep(poll_interval)


def _parse_path_int(text: str, name: str, limit: int = _U64_LIMIT) -> int:
    if not text.isdigit():
        raise web.HTTPBadRequest(text=f"invalid {name}: {text!r}")
    value = int(text)
    if value >= limit:
        raise web.HTTPBadRequest(text=f"{name} out of range: {text}")
    return value


def _optional_query_int(request: web.Request, name: str, limit: int) -> int | None:
    raw = request.query.get(name)
    if raw is None:
        return None
    return _parse_path_int(raw, name, limit)


def _body_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < _U64_LIMIT:
        raise ValueError(f"{name} must be an unsigned 64-bit integer")
    return value


async def _json_body(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise web.HTTPBadRequest(text=f"invalid JSON body: {exc}") from None


class _Api:
    def __init__(
        self, registry: ShardRegistry, provisioner: ShardProvisioner, ready_timeout: float
    ) -> None:
        self.registry = registry
        self.provisioner = provisioner
        self.ready_timeout = ready_timeout

    async def _provision(self, config: LaunchConfig, kind: str) -> ShardInfo:
        try:
            shard_id = await self.provisioner.start_shard(config)
        except ProvisionError as exc:
            logger.warning("failed to provision %s shard: %s", kind, exc)
            raise web.HTTPInternalServerError() from None
        logger.info("%s shard %d provisioning started", kind, shard_id)

        info = await wait_for_shard_ready(self.registry, shard_id, self.ready_timeout)
        if info is None:
            logger.warning("%s shard %d did not become ready in time", kind, shard_id)
            raise web.HTTPGatewayTimeout()
        return info

    async def register(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        try:
            info = ShardInfo.from_dict(body)
            raw_launch = body.get("launch_config")
            launch_config = LaunchConfig.from_dict(raw_launch) if raw_launch is not None else None
        except (ValueError, TypeError) as exc:
            raise web.HTTPUnprocessableEntity(text=str(exc)) from None

        logger.info("registering shard %d (%s)", info.id, info.shard_type)
        self.registry.register(info, launch_config)
        return web.json_response({"shard_id": info.id, "status": "registered"})

    async def list_shards(self, request: web.Request) -> web.Response:
        return web.json_response({"shards": [info.to_dict() for info in self.registry.list()]})

    async def get_shard(self, request: web.Request) -> web.Response:
        shard_id = _parse_path_int(request.match_info["id"], "id")
        entry = self.registry.get(shard_id)
        if entry is None:
            raise web.HTTPNotFound()
        return web.json_response(entry.info.to_dict())

    async def find_planet_shard(self, request: web.Request) -> web.Response:
        seed = _parse_path_int(request.match_info["seed"], "seed")
        system_seed = _optional_query_int(request, "system_seed", _U64_LIMIT)
        planet_index = _optional_query_int(request, "planet_index", _U32_LIMIT)

        ready = [
            info for info in self.registry.find_by_planet(seed) if info.state is ShardState.READY
        ]
        if ready:
            return web.json_response({"shards": [info.to_dict() for info in ready]})

        logger.info(
            "no planet shard for seed %d (system_seed=%s, planet_index=%s), provisioning",
            seed, system_seed, planet_index,
        )
        args = ["--seed", str(seed)]
        if system_seed is not None:
            args += ["--system-seed", str(system_seed)]
        if planet_index is not None:
            args += ["--planet-index", str(planet_index)]
        config = LaunchConfig(binary="planet-shard", args=args, shard_type=ShardType.PLANET)
        info = await self._provision(config, "planet")
        return web.json_response({"shards": [info.to_dict()]})

    async def find_system_shard(self, request: web.Request) -> web.Response:
        seed = _parse_path_int(request.match_info["seed"], "seed")
        existing = self.registry.find_by_system(seed)
        if existing is not None and existing.state is ShardState.READY:
            return web.json_response(existing.to_dict())

        logger.info("no system shard for seed %d, provisioning on demand", seed)
        config = LaunchConfig(
            binary="system-shard", args=["--seed", str(seed)], shard_type=ShardType.SYSTEM
        )
        info = await self._provision(config, "system")
        return web.json_response(info.to_dict())

    async def find_galaxy_shard(self, request: web.Request) -> web.Response:
        seed = _parse_path_int(request.match_info["seed"], "seed")
        existing = self.registry.find_by_galaxy(seed)
        if existing is not None:
            return web.json_response(existing.to_dict())

        logger.info("no galaxy shard for seed %d, provisioning on demand", seed)
        config = LaunchConfig(
            binary="stub-shard",
            args=["--shard-type", "galaxy", "--seed", str(seed)],
            shard_type=ShardType.GALAXY,
        )
        info = await self._provision(config, "galaxy")
        return web.json_response(info.to_dict())

    async def find_ship_shard(self, request: web.Request) -> web.Response:
        ship_id = _parse_path_int(request.match_info["ship_id"], "ship_id")
        info = self.registry.find_by_ship(ship_id)
        if info is None:
            raise web.HTTPNotFound()
        return web.json_response(info.to_dict())

    async def provision_ship_shard(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        try:
            if not isinstance(body, dict):
                raise ValueError("request body must be an object")
            if "ship_id" not in body:
                raise ValueError("missing field: ship_id")
            ship_id = _body_int(body["ship_id"], "ship_id")
            raw_host = body.get("host_shard_id")
            host_shard_id = _body_int(raw_host, "host_shard_id") if raw_host is not None else None
            raw_seed = body.get("system_seed")
            system_seed = _body_int(raw_seed, "system_seed") if raw_seed is not None else 0
        except ValueError as exc:
            raise web.HTTPUnprocessableEntity(text=str(exc)) from None

        existing = self.registry.find_by_ship(ship_id)
        if existing is not None and existing.state is ShardState.READY:
            return web.json_response(existing.to_dict())

        logger.info("provisioning ship shard for ship %d (host=%s)", ship_id, host_shard_id)
        args = ["--ship-id", str(ship_id)]
        if host_shard_id is not None:
            args += ["--host-shard", str(host_shard_id)]
        if system_seed > 0:
            args += ["--system-seed", str(system_seed)]
        config = LaunchConfig(binary="ship-shard", args=args, shard_type=ShardType.SHIP)
        info = await self._provision(config, "ship")
        return web.json_response(info.to_dict())


def build_app(
    registry: ShardRegistry,
    provisioner: ShardProvisioner,
    ready_timeout: float = _DEFAULT_READY_TIMEOUT,
) -> web.Application:
    """The orchestrator's web application."""
    api = _Api(registry, provisioner, ready_timeout)
    app = web.Application()
    app.add_routes(
        [
            web.post("/register", api.register),
            web.get("/shards", api.list_shards),
            web.get("/shard/{id}", api.get_shard),
            web.get("/planet/{seed}", api.find_planet_shard),
            web.get("/system/{seed}", api.find_system_shard),
            web.get("/galaxy/{seed}", api.find_galaxy_shard),
            web.get("/ship/{ship_id}", api.find_ship_shard),
            web.post("/ship", api.provision_ship_shard),
        ]
    )
    return app