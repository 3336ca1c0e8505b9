"""Durable storage of shard records and launch configurations."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from os import PathLike
from typing import Any, Union

from voxorch.shard_types import ShardInfo, ShardType

_SHARD_TABLE = "shards"
_LAUNCH_CONFIG_TABLE = "launch_configs"

StrPath = Union[str, "PathLike[str]"]


@dataclass
class LaunchConfig:
    """How to start a shard process."""

    binary: str
    args: list[str] = field(default_factory=list)
    shard_type: ShardType = ShardType.PLANET

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation."""
        return {
            "binary": self.binary,
            "args": list(self.args),
            "shard_type": self.shard_type.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LaunchConfig:
        """Build from the representation produced by :meth:`to_dict`."""
        if not isinstance(data, dict):
            raise ValueError("launch config must be an object")
        try:
            binary = data["binary"]
            args = data["args"]
            raw_type = data["shard_type"]
        except KeyError as exc:
            raise ValueError(f"missing field: {exc.args[0]}") from None
        if not isinstance(binary, str):
            raise ValueError("binary must be a string")
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ValueError("args must be a list of strings")
        try:
            shard_type = ShardType(raw_type)
        except ValueError:
            raise ValueError(f"invalid shard_type: {raw_type!r}") from None
        return cls(binary=binary, args=list(args), shard_type=shard_type)


def _key(shard_id: int) -> bytes:
    # Big-endian fixed width keeps rows ordered as unsigned 64-bit ids.
    if isinstance(shard_id, bool) or not isinstance(shard_id, int):
        raise ValueError(f"shard id must be an integer: {shard_id!r}")
    try:
        return shard_id.to_bytes(8, "big", signed=False)
    except OverflowError:
        raise ValueError(f"shard id out of range: {shard_id}") from None


def _shard_id(key: bytes) -> int:
    return int.from_bytes(key, "big", signed=False)


def open_db(path: StrPath) -> sqlite3.Connection:
    """Open or create the orchestrator database, ensuring its tables exist."""
    db = sqlite3.connect(str(path))
    try:
        with db:
            for table in (_SHARD_TABLE, _LAUNCH_CONFIG_TABLE):
                db.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} "
                    "(id BLOB PRIMARY KEY, data BLOB NOT NULL)"
                )
    except sqlite3.Error:
        db.close()
        raise
    return db


def _save(db: sqlite3.Connection, table: str, shard_id: int, payload: dict[str, Any]) -> None:
    data = json.dumps(payload).encode("utf-8")
    key = _key(shard_id)
    with db:
        db.execute(f"INSERT OR REPLACE INTO {table} (id, data) VALUES (?, ?)", (key, data))


def save_shard(db: sqlite3.Connection, shard_id: int, info: ShardInfo) -> None:
    """Store a shard's info under ``shard_id``."""
    _save(db, _SHARD_TABLE, shard_id, info.to_dict())


def save_launch_config(db: sqlite3.Connection, shard_id: int, config: LaunchConfig) -> None:
    """Store a launch config under ``shard_id``."""
    _save(db, _LAUNCH_CONFIG_TABLE, shard_id, config.to_dict())


def _load(db: sqlite3.Connection, table: str) -> list[tuple[int, Any]]:
    rows = db.execute(f"SELECT id, data FROM {table} ORDER BY id").fetchall()
    return [(_shard_id(key), json.loads(data)) for key, data in rows]


def load_all_shards(db: sqlite3.Connection) -> list[tuple[int, ShardInfo]]:
    """All stored shards, ordered by id."""
    return [(sid, ShardInfo.from_dict(data)) for sid, data in _load(db, _SHARD_TABLE)]


def load_all_launch_configs(db: sqlite3.Connection) -> list[tuple[int, LaunchConfig]]:
    """All stored launch configs, ordered by shard id."""
    return [
        (sid, LaunchConfig.from_dict(data)) for sid, data in _load(db, _LAUNCH_CONFIG_TABLE)
    ]


def remove_shard(db: sqlite3.Connection, shard_id: int) -> None:
    """Delete a shard and its launch config in one transaction."""
    key = _key(shard_id)
    with db:
        db.execute(f"DELETE FROM {_SHARD_TABLE} WHERE id = ?", (key,))
        db.execute(f"DELETE FROM {_LAUNCH_CONFIG_TABLE} WHERE id = ?", (key,))