"""Shard orchestrator: registry, lifecycle, provisioning and HTTP API for game-world shards."""

__version__ = "0.1.0"