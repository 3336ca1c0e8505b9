"""Core shard descriptors shared by the orchestrator and shards."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ShardType(Enum):
    """Kind of world region a shard simulates."""

    PLANET = "Planet"
    SYSTEM = "System"
    SHIP = "Ship"
    GALAXY = "Galaxy"

    def __str__(self) -> str:
        return self.value.lower()


class ShardState(Enum):
    """Lifecycle state of a shard."""

    PROVISIONING = "Provisioning"
    STARTING = "Starting"
    READY = "Ready"
    DRAINING = "Draining"
    STOPPED = "Stopped"

    def can_transition_to(self, target: ShardState) -> bool:
        """Whether moving from this state to ``target`` is an expected transition."""
        return target is self or target in _TRANSITIONS[self]

    def __str__(self) -> str:
        return self.value


_TRANSITIONS: dict[ShardState, frozenset[ShardState]] = {
    ShardState.PROVISIONING: frozenset(
        {ShardState.STARTING, ShardState.READY, ShardState.STOPPED}
    ),
    ShardState.STARTING: frozenset({ShardState.READY, ShardState.STOPPED}),
    ShardState.READY: frozenset({ShardState.DRAINING, ShardState.STOPPED}),
    ShardState.DRAINING: frozenset({ShardState.STOPPED}),
    ShardState.STOPPED: frozenset({ShardState.PROVISIONING, ShardState.STARTING}),
}


def _enum_value(enum_cls: type[Enum], raw: Any, name: str) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        raise ValueError(f"invalid {name}: {raw!r}") from None


@dataclass(frozen=True)
class ShardEndpoint:
    """Network addresses ("host:port") a shard listens on."""

    tcp_addr: str
    udp_addr: str
    quic_addr: str

    def to_dict(self) -> dict[str, str]:
        return {
            "tcp_addr": self.tcp_addr,
            "udp_addr": self.udp_addr,
            "quic_addr": self.quic_addr,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShardEndpoint:
        try:
            return cls(
                tcp_addr=str(data["tcp_addr"]),
                udp_addr=str(data["udp_addr"]),
                quic_addr=str(data["quic_addr"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"invalid endpoint: {exc}") from None


@dataclass
class ShardInfo:
    """Everything the orchestrator knows about one shard."""

    id: int
    shard_type: ShardType
    state: ShardState
    endpoint: ShardEndpoint
    planet_seed: int | None = None
    sectors: list[int] | None = None
    system_seed: int | None = None
    ship_id: int | None = None
    galaxy_seed: int | None = None
    host_shard_id: int | None = None
    launch_args: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation."""
        return {
            "id": self.id,
            "shard_type": self.shard_type.value,
            "state": self.state.value,
            "endpoint": self.endpoint.to_dict(),
            "planet_seed": self.planet_seed,
            "sectors": list(self.sectors) if self.sectors is not None else None,
            "system_seed": self.system_seed,
            "ship_id": self.ship_id,
            "galaxy_seed": self.galaxy_seed,
            "host_shard_id": self.host_shard_id,
            "launch_args": list(self.launch_args),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShardInfo:
        """Build from the representation produced by :meth:`to_dict`."""
        if not isinstance(data, dict):
            raise ValueError("shard info must be an object")
        try:
            shard_id = int(data["id"])
            shard_type = _enum_value(ShardType, data["shard_type"], "shard_type")
            state = _enum_value(ShardState, data["state"], "state")
            endpoint = ShardEndpoint.from_dict(data["endpoint"])
        except KeyError as exc:
            raise ValueError(f"missing field: {exc.args[0]}") from None
        sectors = data.get("sectors")
        return cls(
            id=shard_id,
            shard_type=shard_type,
            state=state,
            endpoint=endpoint,
            planet_seed=data.get("planet_seed"),
            sectors=list(sectors) if sectors is not None else None,
            system_seed=data.get("system_seed"),
            ship_id=data.get("ship_id"),
            galaxy_seed=data.get("galaxy_seed"),
            host_shard_id=data.get("host_shard_id"),
            launch_args=list(data.get("launch_args") or []),
        )


@dataclass(frozen=True)
class ShardHeartbeat:
    """Periodic liveness report sent by a shard."""

    shard_id: int
    tick_ms: float
    p99_tick_ms: float
    player_count: int
    chunk_count: int