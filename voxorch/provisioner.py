"""Starting and stopping shard processes."""

from __future__ import annotations

import abc
import asyncio
import itertools
import logging

from voxorch.persistence import LaunchConfig

logger = logging.getLogger(__name__)

_FIRST_DYNAMIC_ID = 1000


class ProvisionError(Exception):
    """Base class for provisioning failures."""


class SpawnFailedError(ProvisionError):
    """A shard process could not be started."""

    def __init__(self, cause: OSError) -> None:
        super().__init__(f"failed to start process: {cause}")
        self.cause = cause


class ShardNotFoundError(ProvisionError):
    """No shard with the given id is known."""

    def __init__(self, shard_id: int) -> None:
        super().__init__(f"shard {shard_id} not found")
        self.shard_id = shard_id


class KubeError(ProvisionError):
    """The Kubernetes API reported a failure."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"kubernetes API error: {detail}")
        self.detail = detail


class NoPortsAvailableError(ProvisionError):
    """Every port slot of the dynamic range is in use."""

    def __init__(self) -> None:
        super().__init__("no ports available in the dynamic range")


class ShardProvisioner(abc.ABC):
    """Starts and stops shards."""

    @abc.abstractmethod
    async def start_shard(self, config: LaunchConfig) -> int:
        """Start a shard and return the id assigned to it."""

    @abc.abstractmethod
    async def stop_shard(self, shard_id: int) -> None:
        """Stop a shard; unknown ids are ignored."""


class LocalProvisioner(ShardProvisioner):
    """Runs shards as local child processes."""

    def __init__(self) -> None:
        self._children: dict[int, asyncio.subprocess.Process] = {}
        self._ids = itertools.count(_FIRST_DYNAMIC_ID)
        self._lock = asyncio.Lock()

    async def start_shard(self, config: LaunchConfig) -> int:
        shard_id = next(self._ids)
        logger.info(
            "starting local shard process %d: %s %s", shard_id, config.binary, config.args
        )
        try:
            process = await asyncio.create_subprocess_exec(
                config.binary, *config.args, "--shard-id", str(shard_id)
            )
        except OSError as exc:
            raise SpawnFailedError(exc) from exc
        async with self._lock:
            self._children[shard_id] = process
        return shard_id

    async def stop_shard(self, shard_id: int) -> None:
        async with self._lock:
            process = self._children.pop(shard_id, None)
            if process is None:
                return
            logger.info("stopping local shard process %d", shard_id)
            try:
                process.kill()
            except ProcessLookupError:
                pass
            except OSError as exc:
                logger.warning("failed to kill shard process %d: %s", shard_id, exc)
            await process.wait()