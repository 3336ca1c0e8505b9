"""Shard provisioning through Kubernetes pods."""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from voxorch.persistence import LaunchConfig
from voxorch.provisioner import KubeError, NoPortsAvailableError, ShardProvisioner
from voxorch.shard_types import ShardType

logger = logging.getLogger(__name__)

_FIRST_DYNAMIC_ID = 1000
_SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")

_TYPE_IMAGES = {
    ShardType.SYSTEM: "voxeldust-system-shard:latest",
    ShardType.PLANET: "voxeldust-planet-shard:latest",
    ShardType.SHIP: "voxeldust-ship-shard:latest",
}


@dataclass
class KubernetesProvisionerConfig:
    """Settings for running shards as pods."""

    namespace: str
    shard_image: str
    port_range_start: int
    port_range_end: int
    orchestrator_url: str
    orchestrator_heartbeat_addr: str
    advertise_host: str


def build_port_pool(start: int, end: int) -> list[int]:
    """Base ports of 4-port slots within ``[start, end)``, ascending."""
    return list(range(start, end - 3, 4))


class KubernetesPodsApi:
    """Minimal client for the namespaced pods endpoint of the Kubernetes API."""

    def __init__(
        self,
        base_url: str,
        namespace: str,
        token: str | None = None,
        verify: bool | ssl.SSLContext = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.namespace = namespace
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            verify=verify,
            transport=transport,
            timeout=30.0,
        )

    @classmethod
    def from_cluster(cls, namespace: str) -> KubernetesPodsApi:
        """Configure from the in-cluster service account."""
        host = os.environ.get("KUBERNETES_SERVICE_HOST")
        port = os.environ.get("KUBERNETES_SERVICE_PORT")
        if not host or not port:
            raise KubeError("not running inside a cluster: KUBERNETES_SERVICE_HOST/PORT unset")
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"
        try:
            token = (_SERVICE_ACCOUNT_DIR / "token").read_text().strip()
            context = ssl.create_default_context(cafile=str(_SERVICE_ACCOUNT_DIR / "ca.crt"))
        except (OSError, ssl.SSLError) as exc:
            raise KubeError(f"cannot load service account credentials: {exc}") from exc
        return cls(f"https://{host}:{port}", namespace, token=token, verify=context)

    @property
    def _pods_path(self) -> str:
        return f"/api/v1/namespaces/{self.namespace}/pods"

    async def _send(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise KubeError(str(exc)) from exc
        if response.is_error:
            raise KubeError(f"{response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError:
            return {}

    async def create(self, pod: dict[str, Any]) -> dict[str, Any]:
        """Create a pod; returns the object the API stored."""
        return await self._send("POST", self._pods_path, json=pod)

    async def delete(self, name: str) -> dict[str, Any]:
        """Delete the pod called ``name``."""
        return await self._send("DELETE", f"{self._pods_path}/{name}")

    async def aclose(self) -> None:
        await self._client.aclose()


@dataclass
class _ShardPod:
    pod_name: str
    base_port: int


class KubernetesProvisioner(ShardProvisioner):
    """Creates one host-network pod per shard, each with 4 consecutive ports."""

    def __init__(self, config: KubernetesProvisionerConfig, pods_api: Any) -> None:
        self.config = config
        self._pods_api = pods_api
        self._ids = itertools.count(_FIRST_DYNAMIC_ID)
        self._active: dict[int, _ShardPod] = {}
        # Reversed so popping from the end hands out the lowest ports first.
        self._port_pool = build_port_pool(config.port_range_start, config.port_range_end)[::-1]
        self._lock = asyncio.Lock()
        logger.info(
            "kubernetes provisioner initialized (namespace=%s, image=%s, port slots=%d)",
            config.namespace,
            config.shard_image,
            len(self._port_pool),
        )

    def build_pod(self, shard_id: int, config: LaunchConfig, base_port: int) -> dict[str, Any]:
        """Pod manifest for a shard using ports ``base_port`` .. ``base_port + 3``."""
        tcp_port = base_port
        udp_port = base_port + 1
        quic_port = base_port + 2
        healthz_port = base_port + 3
        args = [
            *config.args,
            "--shard-id", str(shard_id),
            "--tcp-port", str(tcp_port),
            "--udp-port", str(udp_port),
            "--quic-port", str(quic_port),
            "--healthz-port", str(healthz_port),
            "--orchestrator", self.config.orchestrator_url,
            "--orchestrator-heartbeat", self.config.orchestrator_heartbeat_addr,
            "--advertise-host", self.config.advertise_host,
        ]
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": f"shard-{shard_id}",
                "namespace": self.config.namespace,
                "labels": {
                    "app": "voxeldust-shard",
                    "shard-id": str(shard_id),
                    "shard-type": str(config.shard_type),
                },
            },
            "spec": {
                "hostNetwork": True,
                "dnsPolicy": "ClusterFirstWithHostNet",
                "restartPolicy": "Never",
                "containers": [
                    {
                        "name": "shard",
                        "image": _TYPE_IMAGES.get(config.shard_type, self.config.shard_image),
                        "imagePullPolicy": "Never",
                        "args": args,
                        "ports": [
                            {"containerPort": tcp_port, "protocol": "TCP"},
                            {"containerPort": udp_port, "protocol": "UDP"},
                            {"containerPort": quic_port, "protocol": "UDP"},
                            {"containerPort": healthz_port, "protocol": "TCP"},
                        ],
                        "livenessProbe": {
                            "httpGet": {"path": "/healthz", "port": healthz_port},
                            "initialDelaySeconds": 5,
                            "periodSeconds": 5,
                        },
                        "resources": {
                            "limits": {"memory": "256Mi", "cpu": "500m"},
                            "requests": {"memory": "128Mi", "cpu": "100m"},
                        },
                    }
                ],
            },
        }

    async def start_shard(self, config: LaunchConfig) -> int:
        shard_id = next(self._ids)
        async with self._lock:
            if not self._port_pool:
                raise NoPortsAvailableError()
            base_port = self._port_pool.pop()

        pod = self.build_pod(shard_id, config, base_port)
        pod_name = f"shard-{shard_id}"
        logger.info("creating shard pod %s (shard %d, tcp port %d)", pod_name, shard_id, base_port)
        await self._pods_api.create(pod)

        async with self._lock:
            self._active[shard_id] = _ShardPod(pod_name=pod_name, base_port=base_port)
        return shard_id

    async def stop_shard(self, shard_id: int) -> None:
        async with self._lock:
            pod = self._active.pop(shard_id, None)
            if pod is None:
                return
            logger.info("deleting shard pod %s (shard %d)", pod.pod_name, shard_id)
            try:
                await self._pods_api.delete(pod.pod_name)
            except KubeError as exc:
                logger.warning("failed to delete pod for shard %d: %s", shard_id, exc)
            self._port_pool.append(pod.base_port)