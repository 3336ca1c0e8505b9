"""Command-line configuration of the orchestrator."""

from __future__ import annotations

import argparse
import ipaddress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence


def _socket_addr(text: str) -> str:
    host, sep, port_text = text.rpartition(":")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"invalid socket address: {text!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        ipaddress.ip_address(host)
        port = int(port_text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid socket address: {text!r}") from None
    if not 0 <= port <= 0xFFFF:
        raise argparse.ArgumentTypeError(f"port out of range: {text!r}")
    return text


def _unsigned(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {text!r}")
    return value


def _port(text: str) -> int:
    value = _unsigned(text)
    if value > 0xFFFF:
        raise argparse.ArgumentTypeError(f"port out of range: {text!r}")
    return value


@dataclass
class OrchestratorConfig:
    """Settings for the shard orchestrator."""

    http_addr: str = "0.0.0.0:8080"
    heartbeat_addr: str = "0.0.0.0:9090"
    db_path: Path = field(default_factory=lambda: Path("orchestrator.redb"))
    heartbeat_timeout_secs: int = 10
    idle_shutdown_secs: int = 300
    max_restarts: int = 3
    restart_window_secs: int = 60
    provisioner_mode: str = "local"
    shard_image: str = "voxeldust-stub-shard:latest"
    shard_namespace: str = "voxeldust"
    shard_port_range_start: int = 10000
    shard_port_range_end: int = 10100
    shard_advertise_host: str = "127.0.0.1"

    def heartbeat_timeout(self) -> float:
        """Seconds without a heartbeat before a shard counts as dead."""
        return float(self.heartbeat_timeout_secs)

    def idle_shutdown_duration(self) -> float:
        """Seconds with no players before a shard is shut down."""
        return float(self.idle_shutdown_secs)

    def restart_window(self) -> float:
        """Length in seconds of the restart rate-limiting window."""
        return float(self.restart_window_secs)


def _build_parser() -> argparse.ArgumentParser:
    defaults = OrchestratorConfig()
    parser = argparse.ArgumentParser(
        prog="orchestrator", description="Voxeldust shard orchestrator"
    )
    parser.add_argument("--http-addr", type=_socket_addr, default=defaults.http_addr,
                        help="HTTP API listen address")
    parser.add_argument("--heartbeat-addr", type=_socket_addr, default=defaults.heartbeat_addr,
                        help="UDP heartbeat listener address")
    parser.add_argument("--db-path", type=Path, default=defaults.db_path,
                        help="path to the registry database file")
    parser.add_argument("--heartbeat-timeout-secs", type=_unsigned,
                        default=defaults.heartbeat_timeout_secs,
                        help="seconds without heartbeat before a shard is dead")
    parser.add_argument("--idle-shutdown-secs", type=_unsigned,
                        default=defaults.idle_shutdown_secs,
                        help="seconds with 0 players before a shard is shut down")
    parser.add_argument("--max-restarts", type=_unsigned, default=defaults.max_restarts,
                        help="maximum restarts per shard within the restart window")
    parser.add_argument("--restart-window-secs", type=_unsigned,
                        default=defaults.restart_window_secs,
                        help="restart rate-limiting window in seconds")
    parser.add_argument("--provisioner-mode", default=defaults.provisioner_mode,
                        help='"local" for child processes, "kubernetes" for pods')
    parser.add_argument("--shard-image", default=defaults.shard_image,
                        help="container image for shard pods")
    parser.add_argument("--shard-namespace", default=defaults.shard_namespace,
                        help="namespace for shard pods")
    parser.add_argument("--shard-port-range-start", type=_port,
                        default=defaults.shard_port_range_start,
                        help="start of the dynamic shard port range")
    parser.add_argument("--shard-port-range-end", type=_port,
                        default=defaults.shard_port_range_end,
                        help="end of the dynamic shard port range (exclusive)")
    parser.add_argument("--shard-advertise-host", default=defaults.shard_advertise_host,
                        help="host advertised to clients for shard endpoints")
    return parser


def parse_config(argv: Sequence[str] | None = None) -> OrchestratorConfig:
    """Parse command-line arguments; exits with status 2 on invalid input."""
    namespace = _build_parser().parse_args(argv)
    return OrchestratorConfig(**vars(namespace))