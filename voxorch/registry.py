"""In-memory shard registry backed by the persistence database."""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections import deque
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Mapping

from voxorch import persistence
from voxorch.persistence import LaunchConfig, StrPath
from voxorch.shard_types import ShardHeartbeat, ShardInfo, ShardState, ShardType

logger = logging.getLogger(__name__)

_PERSIST_ERRORS = (sqlite3.Error, ValueError, TypeError, json.JSONDecodeError)


@dataclass
class ShardEntry:
    """Runtime record of a tracked shard; times are ``time.monotonic`` seconds."""

    info: ShardInfo
    last_heartbeat: float
    last_metrics: ShardHeartbeat | None = None
    restart_timestamps: deque[float] = field(default_factory=deque)
    launch_config: LaunchConfig | None = None
    idle_since: float | None = None


class ShardRegistry:
    """Tracks shards and indexes them by planet, system, galaxy and ship."""

    def __init__(self, db: sqlite3.Connection) -> None:
        self._db = db
        self._shards: dict[int, ShardEntry] = {}
        self._planet_index: dict[int, list[int]] = {}
        self._system_index: dict[int, int] = {}
        self._galaxy_index: dict[int, int] = {}
        self._ship_index: dict[int, int] = {}

    @classmethod
    def open(cls, db_path: StrPath) -> ShardRegistry:
        """Open the registry, restoring stored shards in the Provisioning state."""
        db = persistence.open_db(db_path)
        registry = cls(db)

        try:
            saved = persistence.load_all_shards(db)
        except _PERSIST_ERRORS as exc:
            logger.warning("failed to load persisted shards: %s", exc)
            saved = []
        now = time.monotonic()
        for shard_id, info in saved:
            # Liveness is unknown; heartbeats move live shards back to Ready.
            info.state = ShardState.PROVISIONING
            logger.info("restored shard %d from persistence", shard_id)
            registry._insert_entry(shard_id, ShardEntry(info=info, last_heartbeat=now))

        try:
            configs = persistence.load_all_launch_configs(db)
        except _PERSIST_ERRORS as exc:
            logger.warning("failed to load persisted launch configs: %s", exc)
            configs = []
        for shard_id, config in configs:
            entry = registry._shards.get(shard_id)
            if entry is not None:
                entry.launch_config = config

        return registry

    def __enter__(self) -> ShardRegistry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def register(self, info: ShardInfo, launch_config: LaunchConfig | None = None) -> None:
        """Register or replace a shard, warning on unexpected state transitions."""
        shard_id = info.id
        existing = self._shards.get(shard_id)

        if existing is not None and not existing.info.state.can_transition_to(info.state):
            logger.warning(
                "invalid state transition for shard %d (%s -> %s), forcing update",
                shard_id,
                existing.info.state,
                info.state,
            )

        try:
            persistence.save_shard(self._db, shard_id, info)
        except _PERSIST_ERRORS as exc:
            logger.warning("failed to persist shard %d: %s", shard_id, exc)

        if launch_config is not None:
            try:
                persistence.save_launch_config(self._db, shard_id, launch_config)
            except _PERSIST_ERRORS as exc:
                logger.warning("failed to persist launch config for shard %d: %s", shard_id, exc)

        if launch_config is None and existing is not None:
            launch_config = existing.launch_config

        entry = ShardEntry(
            info=info,
            last_heartbeat=time.monotonic(),
            restart_timestamps=(
                deque(existing.restart_timestamps) if existing is not None else deque()
            ),
            launch_config=launch_config,
        )

        self._remove_from_indices(shard_id)
        self._insert_entry(shard_id, entry)
        logger.info("shard %d registered", shard_id)

    def update_heartbeat(self, heartbeat: ShardHeartbeat) -> None:
        """Record a heartbeat; unknown shards are ignored."""
        shard_id = heartbeat.shard_id
        entry = self._shards.get(shard_id)
        if entry is None:
            return

        now = time.monotonic()
        entry.last_heartbeat = now
        entry.last_metrics = heartbeat

        if heartbeat.player_count == 0:
            if entry.idle_since is None:
                entry.idle_since = now
        else:
            entry.idle_since = None

        if entry.info.state in (ShardState.PROVISIONING, ShardState.STARTING):
            entry.info.state = ShardState.READY
            try:
                persistence.save_shard(self._db, shard_id, entry.info)
            except _PERSIST_ERRORS as exc:
                logger.warning("failed to persist state transition of shard %d: %s", shard_id, exc)
            logger.info("shard %d transitioned to Ready", shard_id)

    def get(self, shard_id: int) -> ShardEntry | None:
        """The entry for ``shard_id``; it may be modified in place."""
        return self._shards.get(shard_id)

    def list(self) -> list[ShardInfo]:
        return [entry.info for entry in self._shards.values()]

    def entries(self) -> Mapping[int, ShardEntry]:
        """Read-only view of all entries keyed by shard id."""
        return MappingProxyType(self._shards)

    def find_by_planet(self, seed: int) -> list[ShardInfo]:
        """Shards serving the planet with this seed."""
        return [
            self._shards[sid].info
            for sid in self._planet_index.get(seed, [])
            if sid in self._shards
        ]

    def _lookup(self, index: dict[int, int], key: int) -> ShardInfo | None:
        sid = index.get(key)
        if sid is None:
            return None
        entry = self._shards.get(sid)
        return entry.info if entry is not None else None

    def find_by_system(self, seed: int) -> ShardInfo | None:
        return self._lookup(self._system_index, seed)

    def find_by_galaxy(self, seed: int) -> ShardInfo | None:
        return self._lookup(self._galaxy_index, seed)

    def find_by_ship(self, ship_id: int) -> ShardInfo | None:
        return self._lookup(self._ship_index, ship_id)

    def remove(self, shard_id: int) -> None:
        """Drop a shard from memory, its indices and persistence."""
        self._remove_from_indices(shard_id)
        self._shards.pop(shard_id, None)
        try:
            persistence.remove_shard(self._db, shard_id)
        except _PERSIST_ERRORS as exc:
            logger.warning("failed to remove shard %d from persistence: %s", shard_id, exc)

    def flush(self) -> None:
        """Commit anything still pending to disk."""
        self._db.commit()

    def next_id(self) -> int:
        """One more than the highest known shard id, or 1."""
        return max(self._shards, default=0) + 1

    def close(self) -> None:
        """Flush and close the database."""
        try:
            self.flush()
        finally:
            self._db.close()

    def _insert_entry(self, shard_id: int, entry: ShardEntry) -> None:
        info = entry.info
        if info.planet_seed is not None:
            self._planet_index.setdefault(info.planet_seed, []).append(shard_id)
        # Planet and ship shards may carry a system seed as context only.
        if info.system_seed is not None and info.shard_type is ShardType.SYSTEM:
            self._system_index[info.system_seed] = shard_id
        if info.galaxy_seed is not None:
            self._galaxy_index[info.galaxy_seed] = shard_id
        if info.ship_id is not None:
            self._ship_index[info.ship_id] = shard_id
        self._shards[shard_id] = entry

    def _remove_from_indices(self, shard_id: int) -> None:
        entry = self._shards.get(shard_id)
        if entry is None:
            return
        info = entry.info
        if info.planet_seed is not None:
            ids = self._planet_index.get(info.planet_seed)
            if ids is not None:
                ids[:] = [i for i in ids if i != shard_id]
                if not ids:
                    del self._planet_index[info.planet_seed]
        for index, key in (
            (self._system_index, info.system_seed),
            (self._galaxy_index, info.galaxy_seed),
            (self._ship_index, info.ship_id),
        ):
            if key is not None and index.get(key) == shard_id:
                del index[key]


__all__ = ["LaunchConfig", "ShardEntry", "ShardRegistry", "replace"]