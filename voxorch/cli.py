"""Command-line entry point that runs the orchestrator."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sqlite3
from typing import Sequence

from aiohttp import web

from voxorch.config import OrchestratorConfig, parse_config
from voxorch.http_api import build_app
from voxorch.k8s_provisioner import (
    KubernetesPodsApi,
    KubernetesProvisioner,
    KubernetesProvisionerConfig,
)
from voxorch.lifecycle import run_lifecycle_ticker
from voxorch.provisioner import LocalProvisioner, ProvisionError, ShardProvisioner
from voxorch.registry import ShardRegistry

logger = logging.getLogger(__name__)

_LOG_ENV = "VOXORCH_LOG"


def _kubernetes_config(config: OrchestratorConfig) -> KubernetesProvisionerConfig:
    namespace = config.shard_namespace
    return KubernetesProvisionerConfig(
        namespace=namespace,
        shard_image=config.shard_image,
        port_range_start=config.shard_port_range_start,
        port_range_end=config.shard_port_range_end,
        orchestrator_url=f"http://orchestrator.{namespace}.svc.cluster.local:8080",
        orchestrator_heartbeat_addr=f"orchestrator.{namespace}.svc.cluster.local:9090",
        advertise_host=config.shard_advertise_host,
    )


def build_provisioner(config: OrchestratorConfig) -> ShardProvisioner:
    """Pod-based provisioner in "kubernetes" mode, local processes otherwise."""
    if config.provisioner_mode == "kubernetes":
        pods_api = KubernetesPodsApi.from_cluster(config.shard_namespace)
        return KubernetesProvisioner(_kubernetes_config(config), pods_api)
    return LocalProvisioner()


def _split_addr(addr: str) -> tuple[str, int]:
    host, _, port = addr.rpartition(":")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug("cannot install handler for %s", sig)


async def run(config: OrchestratorConfig, stop_event: asyncio.Event | None = None) -> None:
    """Serve the HTTP API and run the lifecycle loop until ``stop_event`` is set."""
    logger.info("orchestrator starting")
    logger.info("listening: http=%s heartbeat=%s", config.http_addr, config.heartbeat_addr)

    registry = ShardRegistry.open(config.db_path)
    try:
        provisioner = build_provisioner(config)
        if stop_event is None:
            stop_event = asyncio.Event()
            _install_signal_handlers(stop_event)

        runner = web.AppRunner(build_app(registry, provisioner))
        await runner.setup()
        try:
            host, port = _split_addr(config.http_addr)
            await web.TCPSite(runner, host, port).start()
            logger.info("HTTP API ready on %s", config.http_addr)

            ticker = asyncio.create_task(
                run_lifecycle_ticker(config, registry, provisioner, stop_event)
            )
            try:
                await stop_event.wait()
                logger.info("shutdown signal received")
            finally:
                stop_event.set()
                await ticker
        finally:
            await runner.cleanup()
    finally:
        try:
            registry.close()
        except sqlite3.Error as exc:
            logger.error("failed to flush registry on shutdown: %s", exc)
    logger.info("orchestrator stopped")


def _configure_logging() -> None:
    level = os.environ.get(_LOG_ENV, "INFO").upper()
    try:
        logging.basicConfig(level=level)
    except ValueError:
        logging.basicConfig(level=logging.INFO)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the orchestrator; returns the process exit status."""
    config = parse_config(argv)
    _configure_logging()
    try:
        asyncio.run(run(config))
    except ProvisionError as exc:
        logger.error("failed to initialize provisioner: %s", exc)
        return 1
    return 0