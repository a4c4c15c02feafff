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

"""Shared fixtures: a fake single-node host that answers every external command."""

from __future__ import annotations

import json
import shutil
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
import yaml

from node_manager.config import AddonConfig, AppsConfig, ClusterConfig, Settings, TimeoutConfig
from node_manager.confirm import PresetConfirmer
from node_manager.context import ManagerContext
from node_manager.models import CommandResult

CONNECTION_REFUSED = "The connection to the server 10.0.0.5:6443 was refused - did you specify the right host or port?"

# Commands (or command + subcommand) that only read state.
READ_ONLY = {
    ("test",), ("grep",), ("cmp",), ("swapon",), ("hostname",),
    ("systemctl", "is-active"), ("systemctl", "is-enabled"),
    ("kubeadm", "version"),
    ("kubectl", "get"), ("kubectl", "version"), ("kubectl", "config"),
}


def is_read_only(argv: Sequence[str]) -> bool:
    if argv and argv[0] == "kubectl":
        argv = [argv[0], *argv[3:]]
    return tuple(argv[:1]) in READ_ONLY or tuple(argv[:2]) in READ_ONLY


# ============================================================================
# Fake host
# ============================================================================

class FakeCluster:
    """Callable runner simulating one node: systemd units, kubeadm and a tiny API server.

    Attributes:
        calls: Every argv received, in order.
        overrides: ``(argv prefix, handler)`` pairs consulted before the simulation.
    """

    def __init__(self, settings: Settings, root: Path) -> None:
        self.settings = settings
        self.root = root
        self.calls: list[tuple[str, ...]] = []
        self.overrides: list[tuple[tuple[str, ...], Callable[[tuple[str, ...]], CommandResult]]] = []
        self.files: set[str] = set()
        self.active: set[str] = set()
        self.enabled: set[str] = set()
        self.tools_installed = False
        self.node_ready = True
        self.tainted = True
        self.dashboard_type = "ClusterIP"
        self.default_class = False
        self.namespaces: dict[str, dict[str, str]] = {"kube-system": {}, "default": {}}
        self.k8s_services: dict[tuple[str, str], dict] = {}
        self.deployments: set[tuple[str, str]] = {("kube-system", "coredns"),
                                                  ("kube-system", "calico-kube-controllers")}
        self.deleted_pvs: list[str] = []
        self._next_node_port = 30000

    # -- helpers for tests --

    def override(self, *prefix: str, result: CommandResult | None = None,
                 handler: Callable[[tuple[str, ...]], CommandResult] | None = None) -> None:
        self.overrides.append((prefix, handler or (lambda argv: result)))

    @property
    def mutations(self) -> list[tuple[str, ...]]:
        return [argv for argv in self.calls if not is_read_only(argv)]

    def kubectl_calls(self, verb: str) -> list[tuple[str, ...]]:
        return [argv[3:] for argv in self.calls if argv[0] == "kubectl" and argv[3:4] == (verb,)]

    def bootstrap(self) -> None:
        """Put the node in the state a successful init leaves behind."""
        self._kubeadm_init()
        self.active |= {"containerd", "kubelet"}
        self.tools_installed = True

    @property
    def api_up(self) -> bool:
        return self.settings.cluster.kubeconfig.exists() and {"containerd", "kubelet"} <= self.active

    # -- dispatch --

    def __call__(self, argv: Sequence[str], timeout: float | None = None, input_text: str | None = None,
                 log_file: Path | None = None) -> CommandResult:
        argv = tuple(str(arg) for arg in argv)
        self.calls.append(argv)
        for prefix, handler in self.overrides:
            if argv[:len(prefix)] == prefix:
                return handler(argv)
        name = argv[0]
        if name == "kubectl":
            return self._kubectl(argv, argv[3:], input_text)
        if name == "systemctl":
            return self._systemctl(argv)
        if name == "kubeadm":
            return self._kubeadm(argv)
        if name == "test":
            path = argv[-1]
            return self._result(argv, 0 if path in self.files or Path(path).exists() and self._owned(path) else 1)
        if name in ("grep", "cmp"):
            return self._result(argv, 0 if argv[-1] in self.files else 1)
        if name in ("tee", "install"):
            self.files.add(argv[-1])
        elif name == "bash":
            self.files.add(argv[-1].split()[-1])
        elif "apt-get" in argv and any(arg.startswith("kubeadm=") for arg in argv):
            self.tools_installed = True
        elif name == "rm":
            self._remove(argv[2:])
        elif name == "hostname":
            return self._result(argv, 0, "10.0.0.5 172.17.0.1\n")
        return self._result(argv, 0)

    @staticmethod
    def _result(argv: tuple[str, ...], code: int, stdout: str = "", stderr: str = "") -> CommandResult:
        return CommandResult(argv=argv, exit_code=code, stdout=stdout, stderr=stderr)

    def _owned(self, path: str) -> bool:
        return Path(path).is_relative_to(self.root)

    def _remove(self, paths: Sequence[str]) -> None:
        for raw in paths:
            self.files.discard(raw)
            path = Path(raw)
            if not self._owned(raw):
                continue
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()

    # -- systemd and kubeadm --

    def _systemctl(self, argv: tuple[str, ...]) -> CommandResult:
        action, unit = argv[1], argv[-1]
        if action == "is-active":
            active = unit in self.active
            return self._result(argv, 0 if active else 3, "active\n" if active else "inactive\n")
        if action == "is-enabled":
            return self._result(argv, 0 if unit in self.enabled else 1)
        if action in ("start", "restart"):
            self.active.add(unit)
            if unit == "containerd":
                self.files.add(str(self.settings.cluster.cri_socket))
        elif action == "stop":
            self.active.discard(unit)
        elif action == "enable":
            self.enabled.add(unit)
        return self._result(argv, 0)

    def _kubeadm_init(self) -> None:
        cluster_cfg = self.settings.cluster
        cluster_cfg.kubeconfig.parent.mkdir(parents=True, exist_ok=True)
        cluster_cfg.kubeconfig.write_text("apiVersion: v1\nkind: Config\n")
        cluster_cfg.manifests_dir.mkdir(parents=True, exist_ok=True)

    def _kubeadm(self, argv: tuple[str, ...]) -> CommandResult:
        if argv[1] == "version":
            if not self.tools_installed:
                return self._result(argv, 127, stderr="kubeadm: command not found")
            return self._result(argv, 0, f"v{self.settings.cluster.k8s_semver}\n")
        if argv[1] == "init":
            self._kubeadm_init()
            self.active.add("kubelet")
        return self._result(argv, 0)

    # -- kubectl --

    def _not_found(self, argv: tuple[str, ...], kind: str, name: str) -> CommandResult:
        return self._result(argv, 1, stderr=f'Error from server (NotFound): {kind} "{name}" not found')

    def _json(self, argv: tuple[str, ...], data: dict) -> CommandResult:
        return self._result(argv, 0, json.dumps(data))

    def _node(self) -> dict:
        taints = [{"key": "node-role.kubernetes.io/control-plane", "effect": "NoSchedule"}] if self.tainted else []
        return {
            "metadata": {"name": "node-1", "labels": {"node-role.kubernetes.io/control-plane": ""}},
            "spec": {"taints": taints},
            "status": {
                "conditions": [{"type": "Ready", "status": "True" if self.node_ready else "False"}],
                "addresses": [{"type": "InternalIP", "address": "10.0.0.5"}],
                "nodeInfo": {"kubeletVersion": "v1.29.0", "osImage": "Ubuntu 22.04"},
            },
        }

    def _service(self, namespace: str, name: str) -> dict | None:
        if (namespace, name) == ("kubernetes-dashboard", "kubernetes-dashboard"):
            if namespace not in self.namespaces:
                return None
            ports = [{"port": 443, "targetPort": 8443}]
            if self.dashboard_type == "NodePort":
                ports[0]["nodePort"] = 30443
            return {"metadata": {"name": name, "namespace": namespace},
                    "spec": {"type": self.dashboard_type, "clusterIP": "10.96.0.10", "ports": ports}}
        return self.k8s_services.get((namespace, name))

    def _apply(self, argv: tuple[str, ...], source: str, input_text: str | None) -> CommandResult:
        if source != "-":
            if "dashboard" in source:
                self.namespaces.setdefault("kubernetes-dashboard", {})
            elif "local-path" in source:
                self.namespaces.setdefault("local-path-storage", {})
                self.deployments.add(("local-path-storage", "local-path-provisioner"))
            return self._result(argv, 0)
        for doc in yaml.safe_load_all(input_text or ""):
            meta = doc["metadata"]
            if doc["kind"] == "Namespace":
                self.namespaces[meta["name"]] = dict(meta.get("labels") or {})
            elif doc["kind"] == "Deployment":
                self.deployments.add((meta["namespace"], meta["name"]))
            elif doc["kind"] == "Service":
                ports = []
                for port in doc["spec"]["ports"]:
                    self._next_node_port += 1
                    ports.append({**port, "nodePort": self._next_node_port})
                self.k8s_services[(meta["namespace"], meta["name"])] = {
                    "metadata": {"name": meta["name"], "namespace": meta["namespace"]},
                    "spec": {"type": doc["spec"].get("type", "ClusterIP"), "ports": ports},
                }
        return self._result(argv, 0)

    def _get(self, argv: tuple[str, ...], args: tuple[str, ...]) -> CommandResult:
        if args[0] == "--raw":
            return self._result(argv, 0, "[+]ping ok\n[+]etcd ok\nreadyz check passed\n")
        args = tuple(arg for arg in args if arg not in ("-o", "json"))
        namespace = args[args.index("-n") + 1] if "-n" in args else None
        kind = args[0]
        name = args[1] if len(args) > 1 and not args[1].startswith("-") else None
        if kind == "nodes":
            return self._json(argv, {"items": [self._node()]})
        if kind == "namespace":
            if name not in self.namespaces:
                return self._not_found(argv, "namespaces", name)
            return self._json(argv, {"metadata": {"name": name, "labels": self.namespaces[name]},
                                     "status": {"phase": "Active"}})
        if kind == "namespaces":
            return self._json(argv, {"items": [{"metadata": {"name": ns, "labels": labels}}
                                               for ns, labels in self.namespaces.items()]})
        if kind == "pods":
            if namespace not in self.namespaces:
                return self._json(argv, {"items": []})
            pod = {"metadata": {"name": "pod-1", "namespace": namespace},
                   "status": {"phase": "Running", "conditions": [{"type": "Ready", "status": "True"}]}}
            return self._json(argv, {"items": [pod]})
        if kind == "deployment":
            if (namespace, name) not in self.deployments:
                return self._not_found(argv, "deployments.apps", name)
            return self._json(argv, self._deployment(namespace, name))
        if kind == "deployments":
            items = [self._deployment(ns, dep) for ns, dep in sorted(self.deployments) if ns == namespace]
            return self._json(argv, {"items": items})
        if kind == "daemonset":
            return self._json(argv, {"metadata": {"name": name, "namespace": namespace},
                                     "status": {"desiredNumberScheduled": 1, "numberReady": 1}})
        if kind == "service":
            service = self._service(namespace, name)
            if service is None:
                return self._not_found(argv, "services", name)
            return self._json(argv, service)
        if kind == "storageclass":
            annotations = {"storageclass.kubernetes.io/is-default-class": "true"} if self.default_class else {}
            return self._json(argv, {"metadata": {"name": name, "annotations": annotations}})
        if kind == "events":
            return self._json(argv, {"items": []})
        return self._result(argv, 1, stderr=f"unsupported fake query: {' '.join(args)}")

    @staticmethod
    def _deployment(namespace: str, name: str) -> dict:
        return {"metadata": {"name": name, "namespace": namespace},
                "spec": {"replicas": 1},
                "status": {"readyReplicas": 1, "conditions": [{"type": "Available", "status": "True"}]}}

    def _kubectl(self, argv: tuple[str, ...], args: tuple[str, ...], input_text: str | None) -> CommandResult:
        verb = args[0]
        if verb == "config":
            return self._result(argv, 0, "https://10.0.0.5:6443")
        if not self.api_up:
            return self._result(argv, 1, stderr=CONNECTION_REFUSED)
        if verb == "get":
            return self._get(argv, args[1:])
        if verb == "version":
            return self._json(argv, {"serverVersion": {"gitVersion": "v1.29.0"}})
        if verb == "apply":
            return self._apply(argv, args[2], input_text)
        if verb == "taint":
            self.tainted = False
        elif verb == "patch":
            if args[1] == "storageclass":
                self.default_class = True
            else:
                self.dashboard_type = "NodePort"
        elif verb == "-n" and args[2:4] == ("create", "token"):
            return self._result(argv, 0, "fake-token\n")
        elif verb == "-n" and args[2] == "patch":
            self.dashboard_type = "NodePort"
        elif verb == "delete":
            if args[1] == "namespace":
                self.namespaces.pop(args[2], None)
            elif args[1] == "pv":
                self.deleted_pvs += [arg for arg in args[2:] if not arg.startswith("--")]
        return self._result(argv, 0)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    etc = tmp_path / "etc" / "kubernetes"
    return Settings(
        cluster=ClusterConfig(
            kubeconfig=etc / "admin.conf",
            manifests_dir=etc / "manifests",
            user_kube_dir=tmp_path / "root" / ".kube",
            state_dirs=[tmp_path / "var" / "lib" / "etcd", tmp_path / "var" / "lib" / "cni"],
            kubelet_dir=tmp_path / "var" / "lib" / "kubelet",
            cri_socket=tmp_path / "run" / "containerd.sock",
            init_log_file=tmp_path / "kubeadm-init.log",
        ),
        addons=AddonConfig(dashboard_token_file=tmp_path / "dashboard-token.txt"),
        apps=AppsConfig(host_data_base_dir=tmp_path / "srv"),
        timeouts=TimeoutConfig(node_register=1, node_ready=1, api_ready=1, calico_wait=1,
                               dashboard_wait=1, deployment_wait=1, poll_interval=0.1),
    )


@pytest.fixture
def fake(settings: Settings, tmp_path: Path) -> FakeCluster:
    return FakeCluster(settings, tmp_path)


@pytest.fixture
def make_context(settings: Settings, fake: FakeCluster) -> Callable[..., ManagerContext]:
    """Build a context around the fake host; gate answers come from a PresetConfirmer."""

    def _make(confirmer: PresetConfirmer | None = None, **overrides) -> ManagerContext:
        effective = settings
        if overrides:
            effective = Settings(
                cluster=settings.cluster,
                addons=settings.addons.model_copy(update=overrides),
                apps=settings.apps,
                timeouts=settings.timeouts,
            )
        return ManagerContext.create(
            effective,
            confirmer or PresetConfirmer(),
            runner=fake,
            sleep=lambda seconds: None,
            preflight=lambda kind: None,
        )

    return _make
