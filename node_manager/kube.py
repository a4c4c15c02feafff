# /*
# Copyright 2026 The Node Manager Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Typed kubectl queries and readiness probes.

Every call passes ``--kubeconfig`` explicitly; no ambient ``KUBECONFIG`` is used.
Query output is requested as JSON and parsed into pydantic models.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field

from node_manager import logger
from node_manager.constants import (
    KUBECTL_QUERY_TIMEOUT,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    NOT_FOUND_MARKERS,
)
from node_manager.errors import KubeQueryError, TransientFailure
from node_manager.executor import is_transient_output
from node_manager.models import Readiness
from node_manager.utils import Runner, run_command


# ============================================================================
# Typed results
# ============================================================================

class NodeInfo(BaseModel):
    name: str
    ready: bool = False
    roles: list[str] = Field(default_factory=list)
    kubelet_version: str = ""
    internal_ip: str | None = None
    external_ip: str | None = None
    os_image: str = ""
    taints: list[str] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: dict) -> NodeInfo:
        meta = raw.get("metadata", {})
        status = raw.get("status", {})
        conditions = {c.get("type"): c.get("status") for c in status.get("conditions", [])}
        addresses = {a.get("type"): a.get("address") for a in status.get("addresses", [])}
        roles = sorted(
            key.rsplit("/", 1)[1]
            for key in meta.get("labels", {})
            if key.startswith("node-role.kubernetes.io/")
        )
        taints = [f"{t.get('key')}:{t.get('effect')}" for t in raw.get("spec", {}).get("taints", []) or []]
        info = status.get("nodeInfo", {})
        return cls(
            name=meta.get("name", ""),
            ready=conditions.get("Ready") == "True",
            roles=roles,
            kubelet_version=info.get("kubeletVersion", ""),
            internal_ip=addresses.get("InternalIP"),
            external_ip=addresses.get("ExternalIP"),
            os_image=info.get("osImage", ""),
            taints=taints,
        )


class NamespaceInfo(BaseModel):
    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    phase: str = ""

    @property
    def managed(self) -> bool:
        return self.labels.get(MANAGED_BY_LABEL) == MANAGED_BY_VALUE

    @classmethod
    def from_raw(cls, raw: dict) -> NamespaceInfo:
        meta = raw.get("metadata", {})
        return cls(name=meta.get("name", ""), labels=meta.get("labels") or {},
                   phase=raw.get("status", {}).get("phase", ""))


class DeploymentStatus(BaseModel):
    name: str
    namespace: str
    replicas: int = 0
    ready_replicas: int = 0
    available: bool = False

    @classmethod
    def from_raw(cls, raw: dict) -> DeploymentStatus:
        meta = raw.get("metadata", {})
        status = raw.get("status", {})
        conditions = {c.get("type"): c.get("status") for c in status.get("conditions", [])}
        return cls(
            name=meta.get("name", ""),
            namespace=meta.get("namespace", ""),
            replicas=raw.get("spec", {}).get("replicas", 0) or 0,
            ready_replicas=status.get("readyReplicas", 0) or 0,
            available=conditions.get("Available") == "True",
        )


class DaemonSetStatus(BaseModel):
    name: str
    namespace: str
    desired: int = 0
    ready: int = 0

    @classmethod
    def from_raw(cls, raw: dict) -> DaemonSetStatus:
        meta = raw.get("metadata", {})
        status = raw.get("status", {})
        return cls(name=meta.get("name", ""), namespace=meta.get("namespace", ""),
                   desired=status.get("desiredNumberScheduled", 0) or 0,
                   ready=status.get("numberReady", 0) or 0)


class PodInfo(BaseModel):
    name: str
    namespace: str
    phase: str = "Unknown"
    ready: bool = False

    @classmethod
    def from_raw(cls, raw: dict) -> PodInfo:
        meta = raw.get("metadata", {})
        status = raw.get("status", {})
        conditions = {c.get("type"): c.get("status") for c in status.get("conditions", [])}
        return cls(name=meta.get("name", ""), namespace=meta.get("namespace", ""),
                   phase=status.get("phase", "Unknown"), ready=conditions.get("Ready") == "True")


class ServiceInfo(BaseModel):
    name: str
    namespace: str
    type: str = "ClusterIP"
    cluster_ip: str | None = None
    node_ports: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict) -> ServiceInfo:
        meta = raw.get("metadata", {})
        spec = raw.get("spec", {})
        node_ports = {
            str(port.get("name") or port.get("port")): port["nodePort"]
            for port in spec.get("ports", [])
            if port.get("nodePort")
        }
        return cls(name=meta.get("name", ""), namespace=meta.get("namespace", ""),
                   type=spec.get("type", "ClusterIP"), cluster_ip=spec.get("clusterIP"),
                   node_ports=node_ports)


class EventInfo(BaseModel):
    namespace: str
    type: str
    reason: str = ""
    involved: str = ""
    message: str = ""
    timestamp: str = ""

    @classmethod
    def from_raw(cls, raw: dict) -> EventInfo:
        involved = raw.get("involvedObject", {})
        timestamp = (raw.get("lastTimestamp") or raw.get("eventTime")
                     or raw.get("metadata", {}).get("creationTimestamp") or "")
        return cls(
            namespace=raw.get("metadata", {}).get("namespace", ""),
            type=raw.get("type", ""),
            reason=raw.get("reason", ""),
            involved=f"{involved.get('kind', '')}/{involved.get('name', '')}",
            message=(raw.get("message") or "").strip(),
            timestamp=timestamp,
        )


# ============================================================================
# Client
# ============================================================================

class KubeClient:
    """kubectl wrapper bound to one kubeconfig.

    Args:
        kubeconfig: Admin kubeconfig path.
        runner: Command runner.
        timeout: Seconds allowed per query.
    """

    def __init__(self, kubeconfig: Path, runner: Runner = run_command,
                 timeout: float = KUBECTL_QUERY_TIMEOUT) -> None:
        self.kubeconfig = kubeconfig
        self.runner = runner
        self.timeout = timeout

    def command(self, *args: str) -> list[str]:
        """Build a kubectl argv bound to this client's kubeconfig."""
        return ["kubectl", "--kubeconfig", str(self.kubeconfig), *args]

    def _run(self, *args: str):
        return self.runner(self.command(*args), timeout=self.timeout)

    def get_json(self, *args: str) -> dict | None:
        """Run ``kubectl get ... -o json``.

        Returns:
            The decoded object, or None when the object does not exist.

        Raises:
            TransientFailure: If the API server cannot be reached.
            KubeQueryError: For any other failure or undecodable output.
        """
        result = self._run("get", *args, "-o", "json")
        if result.exit_code != 0 or result.timed_out:
            message = (result.stderr or result.stdout).strip()
            if result.timed_out or is_transient_output(message):
                raise TransientFailure(f"kubectl get {' '.join(args)}: {message}")
            if any(marker in message.lower() for marker in NOT_FOUND_MARKERS):
                return None
            raise KubeQueryError(f"kubectl get {' '.join(args)} failed: {message}")
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as err:
            raise KubeQueryError(f"kubectl get {' '.join(args)} returned invalid JSON") from err

    def _items(self, *args: str) -> list[dict]:
        data = self.get_json(*args)
        return (data or {}).get("items", [])

    # -- API server --

    def api_reachable(self) -> bool:
        result = self._run("get", "--raw", "/readyz")
        return result.ok

    def server_version(self) -> str | None:
        result = self._run("version", "-o", "json")
        if not result.ok:
            return None
        try:
            return json.loads(result.stdout).get("serverVersion", {}).get("gitVersion")
        except json.JSONDecodeError:
            return None

    def api_endpoint(self) -> str | None:
        result = self._run("config", "view", "--minify", "-o", "jsonpath={.clusters[0].cluster.server}")
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def health(self) -> tuple[bool, str]:
        """Query ``/readyz?verbose``, falling back to ``/healthz``."""
        for path in ("/readyz?verbose", "/healthz"):
            result = self._run("get", "--raw", path)
            if result.ok:
                return True, result.stdout.strip()
        return False, (result.stderr or result.stdout).strip()

    # -- Resources --

    def nodes(self) -> list[NodeInfo]:
        return [NodeInfo.from_raw(item) for item in self._items("nodes")]

    def namespace(self, name: str) -> NamespaceInfo | None:
        raw = self.get_json("namespace", name)
        return NamespaceInfo.from_raw(raw) if raw else None

    def namespaces(self) -> list[NamespaceInfo]:
        return [NamespaceInfo.from_raw(item) for item in self._items("namespaces")]

    def deployment(self, namespace: str, name: str) -> DeploymentStatus | None:
        raw = self.get_json("deployment", name, "-n", namespace)
        return DeploymentStatus.from_raw(raw) if raw else None

    def deployments(self, namespace: str | None = None) -> list[DeploymentStatus]:
        scope = ["-n", namespace] if namespace else ["-A"]
        return [DeploymentStatus.from_raw(item) for item in self._items("deployments", *scope)]

    def daemonset(self, namespace: str, name: str) -> DaemonSetStatus | None:
        raw = self.get_json("daemonset", name, "-n", namespace)
        return DaemonSetStatus.from_raw(raw) if raw else None

    def pods(self, namespace: str | None = None, selector: str | None = None) -> list[PodInfo]:
        args = ["pods", *(["-n", namespace] if namespace else ["-A"])]
        if selector:
            args += ["-l", selector]
        return [PodInfo.from_raw(item) for item in self._items(*args)]

    def service(self, namespace: str, name: str) -> ServiceInfo | None:
        raw = self.get_json("service", name, "-n", namespace)
        return ServiceInfo.from_raw(raw) if raw else None

    def storage_class_annotations(self, name: str) -> dict[str, str] | None:
        raw = self.get_json("storageclass", name)
        if raw is None:
            return None
        return raw.get("metadata", {}).get("annotations") or {}

    def warning_events(self, limit: int) -> list[EventInfo]:
        """Return the most recent non-Normal events across all namespaces."""
        events = [EventInfo.from_raw(item) for item in self._items("events", "-A")]
        events = [event for event in events if event.type != "Normal"]
        events.sort(key=lambda event: event.timestamp)
        return events[-limit:]

    def node_ip(self) -> str | None:
        """InternalIP of the first node, then its ExternalIP."""
        try:
            nodes = self.nodes()
        except (TransientFailure, KubeQueryError) as exc:
            logger.debug("Could not read node addresses: %s", exc)
            return None
        for node in nodes:
            if node.internal_ip or node.external_ip:
                return node.internal_ip or node.external_ip
        return None

    # ========================================================================
    # Readiness probes
    # ========================================================================

    def api_readiness(self) -> Readiness:
        """API server readiness; connection errors mean it is still starting."""
        return Readiness.READY if self.api_reachable() else Readiness.NOT_READY

    def _probe(self, check) -> Readiness:
        try:
            return Readiness.READY if check() else Readiness.NOT_READY
        except TransientFailure:
            return Readiness.UNREACHABLE
        except KubeQueryError as exc:
            logger.debug("Readiness query failed: %s", exc)
            return Readiness.NOT_READY

    def node_registered(self) -> Readiness:
        return self._probe(lambda: bool(self.nodes()))

    def node_readiness(self) -> Readiness:
        def _all_ready() -> bool:
            nodes = self.nodes()
            return bool(nodes) and all(node.ready for node in nodes)
        return self._probe(_all_ready)

    def pods_readiness(self, namespace: str, selector: str) -> Readiness:
        def _all_ready() -> bool:
            pods = self.pods(namespace, selector)
            return bool(pods) and all(pod.ready for pod in pods)
        return self._probe(_all_ready)

    def deployment_readiness(self, namespace: str, name: str) -> Readiness:
        def _available() -> bool:
            deployment = self.deployment(namespace, name)
            return deployment is not None and deployment.available
        return self._probe(_available)
