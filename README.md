# voxorch

voxorch is an orchestrator for game-world shards. It keeps track of shards: planets, star
systems, galaxies and ships. It starts a shard when a client asks for one, watches shards
through UDP heartbeats, restarts shards that die, and shuts down shards that have sat idle
for too long.

## What it does

- **Registry.** A registry of shards held in memory and saved in a local database file. It
  keeps indexes by planet seed, system seed, galaxy seed and ship id. When the orchestrator
  restarts, the shards it restores start in the `Provisioning` state. A heartbeat then moves
  each live shard to `Ready`.
- **Heartbeats.** Shards send heartbeats over UDP. These update the shard's metrics, keep
  track of how long it has had no players, and move it to `Ready`.
- **Lifecycle ticker.** The ticker runs once per second:
  - It marks a shard dead when its heartbeats stop, and restarts it automatically. Restarts
    are rate-limited by a maximum count within a time window.
  - It shuts down a shard that has had no players for too long.
- **Provisioners.**
  - `LocalProvisioner` starts each shard as a child process on the same machine.
  - `KubernetesProvisioner` starts each shard as a host-network pod. Each pod gets four
    consecutive ports from a dynamic pool.
- **HTTP API** (aiohttp):

  | Method | Path | Purpose |
  |--------|------|---------|
  | `POST` | `/register` | Register or update a shard |
  | `GET` | `/shards` | List all shards |
  | `GET` | `/shard/{id}` | Look up one shard; 404 if unknown |
  | `GET` | `/planet/{seed}?system_seed=&planet_index=` | Find the Ready planet shards, or start one |
  | `GET` | `/system/{seed}` | Find the Ready system shard, or start one |
  | `GET` | `/galaxy/{seed}` | Find the galaxy shard, or start one |
  | `GET` | `/ship/{ship_id}` | Look up the ship shard |
  | `POST` | `/ship` | Start a ship shard (`ship_id`, `host_shard_id`, `system_seed`) |

  When the API has to start a shard, it waits up to 30 seconds for that shard to become
  `Ready`:
  - If the shard does not become Ready in time, the response is 504.
  - If the shard cannot be started at all, the response is 500.

The package also has building blocks for shards themselves:

- `CircuitBreaker`, with exponential backoff.
- `TickLoop`, a 20 Hz loop that runs named systems in order and tracks p99 tick time.
- `PeerShardRegistry`, a cached view of the other shards.

## Installation

```
pip install .
```

## Running

```
voxorch --http-addr 0.0.0.0:8080 --heartbeat-addr 0.0.0.0:9090 --db-path orchestrator.db
```

Options:

| Option | Default | Meaning |
|--------|---------|---------|
| `--heartbeat-timeout-secs` | `10` | A shard that sends no heartbeat for this long counts as dead |
| `--idle-shutdown-secs` | `300` | A shard with no players for this long is shut down |
| `--max-restarts` | `3` | Most automatic restarts allowed within the restart window |
| `--restart-window-secs` | `60` | Length of the restart window |
| `--provisioner-mode` | `local` | `local` or `kubernetes` |
| `--shard-image` | — | Image for shard pods (kubernetes mode) |
| `--shard-namespace` | — | Namespace for shard pods (kubernetes mode) |
| `--shard-port-range-start` | `10000` | First port of the dynamic range (kubernetes mode) |
| `--shard-port-range-end` | `10100` | End of the dynamic range (kubernetes mode) |
| `--shard-advertise-host` | — | Host that shards advertise to clients (kubernetes mode) |

Press Ctrl-C to stop the orchestrator. It then shuts down all of its tasks and flushes the
registry.

## Using it as a library

```python
from voxorch.registry import ShardRegistry
from voxorch.shard_types import ShardInfo, ShardType, ShardState, ShardEndpoint

registry = ShardRegistry.open("orchestrator.db")
registry.register(
    ShardInfo(
        id=1,
        shard_type=ShardType.PLANET,
        state=ShardState.READY,
        endpoint=ShardEndpoint("127.0.0.1:7777", "127.0.0.1:7778", "127.0.0.1:7779"),
        planet_seed=42,
    ),
    None,
)
print([info.id for info in registry.find_by_planet(42)])
registry.close()
```

## Tests

```
pip install .[test]
pytest
```