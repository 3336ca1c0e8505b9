from pathlib import Path

import pytest

from voxorch.config import OrchestratorConfig, parse_config


def test_defaults():
    config = parse_config([])
    assert config.http_addr == "0.0.0.0:8080"
    assert config.heartbeat_addr == "0.0.0.0:9090"
    assert config.db_path == Path("orchestrator.redb")
    assert config.provisioner_mode == "local"
    assert config.shard_image == "voxeldust-stub-shard:latest"
    assert config.shard_namespace == "voxeldust"
    assert config.shard_port_range_start == 10000
    assert config.shard_port_range_end == 10100
    assert config.shard_advertise_host == "127.0.0.1"


def test_parse_matches_dataclass_defaults():
    assert parse_config([]) == OrchestratorConfig()


def test_duration_helpers_use_defaults():
    config = parse_config([])
    assert config.heartbeat_timeout() == 10
    assert config.idle_shutdown_duration() == 300
    assert config.restart_window() == 60


def test_overrides():
    config = parse_config([
        "--http-addr", "127.0.0.1:0",
        "--heartbeat-timeout-secs", "7",
        "--max-restarts", "9",
        "--provisioner-mode", "kubernetes",
        "--db-path", "custom.db",
    ])
    assert config.http_addr == "127.0.0.1:0"
    assert config.heartbeat_timeout() == 7
    assert config.max_restarts == 9
    assert config.provisioner_mode == "kubernetes"
    assert config.db_path == Path("custom.db")


def test_durations_follow_fields():
    config = OrchestratorConfig(heartbeat_timeout_secs=4, idle_shutdown_secs=8, restart_window_secs=12)
    assert config.heartbeat_timeout() == 4
    assert config.idle_shutdown_duration() == 8
    assert config.restart_window() == 12


@pytest.mark.parametrize("argv", [
    ["--http-addr", "not-an-address"],
    ["--heartbeat-addr", "127.0.0.1:70000"],
    ["--heartbeat-timeout-secs", "-1"],
    ["--shard-port-range-end", "99999"],
    ["--max-restarts", "many"],
])
def test_invalid_arguments_exit(argv):
    with pytest.raises(SystemExit) as info:
        parse_config(argv)
    assert info.value.code == 2