"""Periodic shard lifecycle management: dead detection, restarts, idle shutdown."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque

from voxorch.config import OrchestratorConfig
from voxorch.provisioner import ProvisionError, ShardProvisioner
from voxorch.registry import ShardRegistry
from voxorch.shard_types import ShardState

logger = logging.getLogger(__name__)

_TICK_SECONDS = 1.0


async def tick(
    config: OrchestratorConfig,
    registry: ShardRegistry,
    provisioner: ShardProvisioner,
    now: float | None = None,
) -> None:
    """Run one lifecycle pass; ``now`` is a ``time.monotonic`` reading."""
    if now is None:
        now = time.monotonic()

    dead: list[int] = []
    idle: list[int] = []
    for shard_id, entry in list(registry.entries().items()):
        if entry.info.state is ShardState.STOPPED:
            continue
        if now - entry.last_heartbeat > config.heartbeat_timeout():
            dead.append(shard_id)
            continue
        if (
            entry.idle_since is not None
            and entry.info.state is ShardState.READY
            and now - entry.idle_since > config.idle_shutdown_duration()
        ):
            idle.append(shard_id)

    for shard_id in dead:
        entry = registry.get(shard_id)
        if entry is None:
            continue
        logger.warning("shard %d missed heartbeat, marking as dead", shard_id)
        entry.info.state = ShardState.STOPPED

        window = config.restart_window()
        entry.restart_timestamps = deque(
            t for t in entry.restart_timestamps if now - t < window
        )
        launch_config = entry.launch_config
        if len(entry.restart_timestamps) >= config.max_restarts or launch_config is None:
            continue
        entry.restart_timestamps.append(now)

        logger.info("auto-restarting dead shard %d", shard_id)
        try:
            new_id = await provisioner.start_shard(launch_config)
        except ProvisionError as exc:
            logger.warning("failed to restart shard %d: %s", shard_id, exc)
        else:
            logger.info("shard %d restarted as %d", shard_id, new_id)

    for shard_id in idle:
        logger.info("shard %d idle too long, shutting down", shard_id)
        entry = registry.get(shard_id)
        if entry is not None:
            entry.info.state = ShardState.DRAINING
        try:
            await provisioner.stop_shard(shard_id)
        except ProvisionError as exc:
            logger.warning("failed to stop idle shard %d: %s", shard_id, exc)
        entry = registry.get(shard_id)
        if entry is not None:
            entry.info.state = ShardState.STOPPED


async def run_lifecycle_ticker(
    config: OrchestratorConfig,
    registry: ShardRegistry,
    provisioner: ShardProvisioner,
    stop_event: asyncio.Event,
) -> None:
    """Run :func:`tick` once a second until ``stop_event`` is set."""
    while not stop_event.is_set():
        await tick(config, registry, provisioner)
        try:
            await asyncio.wait_for(stop_event.wait(), _TICK_SECONDS)
        except asyncio.TimeoutError:
            pass
    logger.info("lifecycle ticker shutting down")