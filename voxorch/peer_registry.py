"""Cached view of peer shards, refreshed from the orchestrator."""

from __future__ import annotations

from typing import Iterable

from voxorch.shard_types import ShardEndpoint, ShardInfo, ShardType


class PeerShardRegistry:
    """Peer shard endpoints keyed by shard id."""

    def __init__(self) -> None:
        self._peers: dict[int, ShardInfo] = {}

    def update(self, shards: Iterable[ShardInfo]) -> None:
        """Replace the registry contents with a fresh shard list."""
        self._peers = {info.id: info for info in shards}

    def get(self, shard_id: int) -> ShardInfo | None:
        return self._peers.get(shard_id)

    def find_by_type(self, shard_type: ShardType) -> list[ShardInfo]:
        return [info for info in self._peers.values() if info.shard_type is shard_type]

    def quic_addr(self, shard_id: int) -> str | None:
        info = self.get(shard_id)
        return info.endpoint.quic_addr if info is not None else None

    def endpoint(self, shard_id: int) -> ShardEndpoint | None:
        info = self.get(shard_id)
        return info.endpoint if info is not None else None

    def all(self) -> list[ShardInfo]:
        return list(self._peers.values())