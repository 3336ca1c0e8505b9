import asyncio
import contextlib

import pytest
from aiohttp import test_utils

from voxorch.http_api import build_app, wait_for_shard_ready
from voxorch.persistence import LaunchConfig
from voxorch.provisioner import LocalProvisioner, ShardProvisioner
from voxorch.registry import ShardRegistry
from voxorch.shard_types import ShardEndpoint, ShardInfo, ShardState, ShardType


def endpoint_at(port_base):
    return ShardEndpoint(
        tcp_addr=f"127.0.0.1:{port_base}",
        udp_addr=f"127.0.0.1:{port_base + 1}",
        quic_addr=f"127.0.0.1:{port_base + 2}",
    )


class RecordingProvisioner(ShardProvisioner):
    """Registers each started shard as Ready unless told not to."""

    def __init__(self, registry, become_ready=True):
        self.registry = registry
        self.become_ready = become_ready
        self.configs = []
        self.next_id = 1000

    async def start_shard(self, config):
        self.configs.append(config)
        shard_id = self.next_id
        self.next_id += 1
        if self.become_ready:
            self.registry.register(
                ShardInfo(
                    id=shard_id,
                    shard_type=config.shard_type,
                    state=ShardState.READY,
                    endpoint=endpoint_at(8000),
                ),
                None,
            )
        return shard_id

    async def stop_shard(self, shard_id):
        return None


@pytest.fixture
def registry(tmp_path):
    reg = ShardRegistry.open(tmp_path / "test.redb")
    yield reg
    reg.close()


@contextlib.asynccontextmanager
async def serve(app):
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        yield client


def planet(shard_id, seed, port=7777, state=ShardState.READY):
    return ShardInfo(
        id=shard_id,
        shard_type=ShardType.PLANET,
        state=state,
        endpoint=endpoint_at(port),
        planet_seed=seed,
        sectors=[0, 1, 2, 3, 4, 5],
    )


def system(shard_id, seed, state=ShardState.READY):
    return ShardInfo(
        id=shard_id,
        shard_type=ShardType.SYSTEM,
        state=state,
        endpoint=endpoint_at(9777),
        system_seed=seed,
    )


@pytest.mark.asyncio
async def test_register_and_list_shards(registry):
    async with serve(build_app(registry, LocalProvisioner())) as client:
        body = planet(1, 42).to_dict()
        body["launch_config"] = None
        resp = await client.post("/register", json=body)
        assert resp.status == 200
        assert await resp.json() == {"shard_id": 1, "status": "registered"}

        resp = await client.get("/shards")
        assert resp.status == 200
        shards = (await resp.json())["shards"]
        assert len(shards) == 1
        assert shards[0]["planet_seed"] == 42


@pytest.mark.asyncio
async def test_register_stores_launch_config(registry):
    async with serve(build_app(registry, LocalProvisioner())) as client:
        body = planet(3, 42).to_dict()
        body["launch_config"] = LaunchConfig(
            binary="planet-shard", args=["--seed", "42"], shard_type=ShardType.PLANET
        ).to_dict()
        resp = await client.post("/register", json=body)
        assert resp.status == 200
    entry = registry.get(3)
    assert entry.launch_config.binary == "planet-shard"
    assert entry.launch_config.args == ["--seed", "42"]


@pytest.mark.asyncio
async def test_register_rejects_bad_bodies(registry):
    async with serve(build_app(registry, LocalProvisioner())) as client:
        resp = await client.post("/register", data=b"{not json",
                                 headers={"Content-Type": "application/json"})
        assert resp.status == 400
        resp = await client.post("/register", json={"id": 1})
        assert resp.status == 422
    assert registry.list() == []


@pytest.mark.asyncio
async def test_lookup_shard_by_id(registry):
    registry.register(system(5, 100), None)
    async with serve(build_app(registry, LocalProvisioner())) as client:
        resp = await client.get("/shard/5")
        assert resp.status == 200
        assert (await resp.json())["system_seed"] == 100

        resp = await client.get("/shard/999")
        assert resp.status == 404

        resp = await client.get("/shard/abc")
        assert resp.status == 400


@pytest.mark.asyncio
async def test_find_planet_shard_by_seed(registry):
    registry.register(planet(1, 42, 7777), None)
    registry.register(planet(2, 42, 7780), None)
    async with serve(build_app(registry, LocalProvisioner())) as client:
        resp = await client.get("/planet/42")
        assert resp.status == 200
        shards = (await resp.json())["shards"]
        assert len(shards) == 2
        assert {s["id"] for s in shards} == {1, 2}


@pytest.mark.asyncio
async def test_find_system_shard_by_seed(registry):
    registry.register(system(10, 200), None)
    async with serve(build_app(registry, LocalProvisioner())) as client:
        resp = await client.get("/system/200")
        assert resp.status == 200
        assert (await resp.json())["id"] == 10

        # No shard: provisioning needs a binary that does not exist here.
        resp = await client.get("/system/999")
        assert resp.status == 500


@pytest.mark.asyncio
async def test_planet_provisioning_passes_query_args(registry):
    provisioner = RecordingProvisioner(registry)
    async with serve(build_app(registry, provisioner)) as client:
        resp = await client.get("/planet/42?system_seed=7&planet_index=2")
        assert resp.status == 200
        shards = (await resp.json())["shards"]
    assert [s["id"] for s in shards] == [1000]
    config = provisioner.configs[0]
    assert config.binary == "planet-shard"
    assert config.shard_type is ShardType.PLANET
    assert config.args == ["--seed", "42", "--system-seed", "7", "--planet-index", "2"]


@pytest.mark.asyncio
async def test_stopped_system_shard_is_reprovisioned(registry):
    registry.register(system(10, 200, state=ShardState.STOPPED), None)
    provisioner = RecordingProvisioner(registry)
    async with serve(build_app(registry, provisioner)) as client:
        resp = await client.get("/system/200")
        assert resp.status == 200
        assert (await resp.json())["id"] == 1000
    assert provisioner.configs[0].binary == "system-shard"
    assert provisioner.configs[0].args == ["--seed", "200"]


@pytest.mark.asyncio
async def test_galaxy_lookup_and_provisioning(registry):
    registry.register(
        ShardInfo(
            id=20,
            shard_type=ShardType.GALAXY,
            state=ShardState.STARTING,
            endpoint=endpoint_at(9000),
            galaxy_seed=3,
        ),
        None,
    )
    provisioner = RecordingProvisioner(registry)
    async with serve(build_app(registry, provisioner)) as client:
        resp = await client.get("/galaxy/3")
        assert (await resp.json())["id"] == 20
        resp = await client.get("/galaxy/7")
        assert resp.status == 200
        assert (await resp.json())["id"] == 1000
    assert len(provisioner.configs) == 1
    assert provisioner.configs[0].binary == "stub-shard"
    assert provisioner.configs[0].args == ["--shard-type", "galaxy", "--seed", "7"]


@pytest.mark.asyncio
async def test_ship_lookup(registry):
    registry.register(
        ShardInfo(
            id=30,
            shard_type=ShardType.SHIP,
            state=ShardState.READY,
            endpoint=endpoint_at(9100),
            ship_id=77,
        ),
        None,
    )
    async with serve(build_app(registry, LocalProvisioner())) as client:
        resp = await client.get("/ship/77")
        assert resp.status == 200
        assert (await resp.json())["ship_id"] == 77
        resp = await client.get("/ship/78")
        assert resp.status == 404


@pytest.mark.asyncio
async def test_ship_provisioning_builds_args(registry):
    provisioner = RecordingProvisioner(registry)
    async with serve(build_app(registry, provisioner)) as client:
        resp = await client.post("/ship", json={"ship_id": 5, "host_shard_id": 3, "system_seed": 9})
        assert resp.status == 200
        resp = await client.post("/ship", json={"ship_id": 6})
        assert resp.status == 200
        resp = await client.post("/ship", json={"host_shard_id": 3})
        assert resp.status == 422
    assert provisioner.configs[0].binary == "ship-shard"
    assert provisioner.configs[0].args == [
        "--ship-id", "5", "--host-shard", "3", "--system-seed", "9",
    ]
    assert provisioner.configs[1].args == ["--ship-id", "6"]


@pytest.mark.asyncio
async def test_ready_ship_shard_is_reused(registry):
    registry.register(
        ShardInfo(
            id=31,
            shard_type=ShardType.SHIP,
            state=ShardState.READY,
            endpoint=endpoint_at(9200),
            ship_id=5,
        ),
        None,
    )
    provisioner = RecordingProvisioner(registry)
    async with serve(build_app(registry, provisioner)) as client:
        resp = await client.post("/ship", json={"ship_id": 5})
        assert (await resp.json())["id"] == 31
    assert provisioner.configs == []


@pytest.mark.asyncio
async def test_provisioned_shard_not_ready_times_out(registry):
    provisioner = RecordingProvisioner(registry, become_ready=False)
    async with serve(build_app(registry, provisioner, ready_timeout=0.2)) as client:
        resp = await client.get("/system/5")
        assert resp.status == 504


@pytest.mark.asyncio
async def test_wait_for_shard_ready_sees_late_registration(registry):
    async def register_later():
        await asyncio.sleep(0.05)
        registry.register(planet(9, 1), None)

    task = asyncio.create_task(register_later())
    info = await wait_for_shard_ready(registry, 9, timeout=2.0, poll_interval=0.01)
    await task
    assert info.id == 9
    assert info.state is ShardState.READY


@pytest.mark.asyncio
async def test_wait_for_shard_ready_ignores_non_ready(registry):
    registry.register(planet(4, 1, state=ShardState.STARTING), None)
    info = await wait_for_shard_ready(registry, 4, timeout=0.1, poll_interval=0.01)
    assert info is None