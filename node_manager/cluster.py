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

"""kubeadm cluster lifecycle: init, access, readiness waits, reset and services."""

from __future__ import annotations

from node_manager.constants import CONTROL_PLANE_TAINT, KUBECTL_QUERY_TIMEOUT
from node_manager.context import ManagerContext
from node_manager.errors import NodeManagerError
from node_manager.kube import KubeClient
from node_manager.models import RetryPolicy, Step

PHASE_INIT = "Initialising the control plane"
PHASE_ACCESS = "Configuring cluster access"
PHASE_NODE = "Waiting for the node"
PHASE_RESET = "Resetting the cluster"
PHASE_START = "Starting the cluster"
PHASE_STOP = "Stopping the cluster"

KUBECTL_RETRY = RetryPolicy(max_attempts=4, backoff="exponential", delay=2, max_delay=20)


def _service_active(ctx: ManagerContext, service: str) -> bool:
    return ctx.check(["systemctl", "is-active", "--quiet", service])


def start_service_step(ctx: ManagerContext, service: str, phase: str) -> Step:
    return ctx.executor.command(f"Start {service}", ["systemctl", "start", service], phase=phase,
                                satisfied=lambda: _service_active(ctx, service))


def stop_service_step(ctx: ManagerContext, service: str, phase: str, critical: bool = True) -> Step:
    return ctx.executor.command(f"Stop {service}", ["systemctl", "stop", service], phase=phase,
                                critical=critical, satisfied=lambda: not _service_active(ctx, service))


# ============================================================================
# Init
# ============================================================================

def cluster_init_steps(ctx: ManagerContext) -> list[Step]:
    """Run ``kubeadm init`` and verify it wrote the admin kubeconfig."""
    cluster_cfg = ctx.settings.cluster
    ex = ctx.executor

    def _verify_kubeconfig() -> str:
        if not cluster_cfg.kubeconfig.exists():
            raise NodeManagerError(
                f"kubeadm init finished but {cluster_cfg.kubeconfig} is missing; "
                f"see {cluster_cfg.init_log_file}"
            )
        return str(cluster_cfg.kubeconfig)

    return [
        stop_service_step(ctx, "kubelet", PHASE_INIT),
        ex.command(
            "kubeadm init",
            [
                "kubeadm", "init",
                f"--pod-network-cidr={cluster_cfg.pod_network_cidr}",
                f"--kubernetes-version={cluster_cfg.k8s_semver}",
                f"--cri-socket=unix://{cluster_cfg.cri_socket}",
            ],
            phase=PHASE_INIT,
            timeout=ctx.settings.timeouts.kubeadm_init,
            log_file=cluster_cfg.init_log_file,
        ),
        ex.local("Verify admin kubeconfig", _verify_kubeconfig, phase=PHASE_INIT, mutating=False),
    ]


def configure_access_steps(ctx: ManagerContext) -> list[Step]:
    """Copy the admin kubeconfig to the operator's kube directory (mode 0600)."""
    cluster_cfg = ctx.settings.cluster
    target = cluster_cfg.user_kube_dir / "config"
    return [
        ctx.executor.command(
            "Install kubeconfig for the operator",
            ["install", "-D", "-m", "0600", str(cluster_cfg.kubeconfig), str(target)],
            phase=PHASE_ACCESS,
            satisfied=lambda: ctx.check(["cmp", "-s", str(cluster_cfg.kubeconfig), str(target)]),
        ),
    ]


# ============================================================================
# Node readiness
# ============================================================================

def wait_node_registered_step(ctx: ManagerContext) -> Step:
    timeouts = ctx.settings.timeouts
    return ctx.executor.waiting("Wait for node registration", ctx.kube.node_registered, phase=PHASE_NODE,
                                timeout=timeouts.node_register, interval=timeouts.poll_interval)


def wait_node_ready_step(ctx: ManagerContext) -> Step:
    timeouts = ctx.settings.timeouts
    return ctx.executor.waiting("Wait for node Ready", ctx.kube.node_readiness, phase=PHASE_NODE,
                                timeout=timeouts.node_ready, interval=timeouts.poll_interval)


def wait_api_step(ctx: ManagerContext, phase: str) -> Step:
    timeouts = ctx.settings.timeouts
    return ctx.executor.waiting("Wait for the API server", ctx.kube.api_readiness, phase=phase,
                                timeout=timeouts.api_ready, interval=timeouts.poll_interval)


def _node_tainted(kube: KubeClient) -> bool:
    return any(CONTROL_PLANE_TAINT in node.taints for node in kube.nodes())


def untaint_step(ctx: ManagerContext) -> Step:
    """Allow workloads on the control-plane node."""
    return ctx.executor.command(
        "Allow workloads on the control plane",
        ctx.kubectl("taint", "nodes", "--all", f"{CONTROL_PLANE_TAINT}-"),
        phase=PHASE_NODE,
        critical=False,
        timeout=KUBECTL_QUERY_TIMEOUT,
        retry=KUBECTL_RETRY,
        satisfied=lambda: not _node_tainted(ctx.kube),
    )


# ============================================================================
# Reset, start and stop
# ============================================================================

def reset_steps(ctx: ManagerContext) -> list[Step]:
    """Tear the cluster down: kubeadm reset, state cleanup, services stopped.

    ``kubeadm reset`` errors are tolerated; the kubeconfig check afterwards
    is what decides whether the reset worked.
    """
    cluster_cfg = ctx.settings.cluster
    ex = ctx.executor
    removed = [cluster_cfg.user_kube_dir, cluster_cfg.kubeconfig, cluster_cfg.manifests_dir,
               *cluster_cfg.state_dirs]

    def _verify_removed() -> str:
        if cluster_cfg.kubeconfig.exists():
            raise NodeManagerError(f"{cluster_cfg.kubeconfig} still exists after reset")
        return "kubeconfig removed"

    return [
        ex.command("kubeadm reset", ["kubeadm", "reset", "--force"], phase=PHASE_RESET, critical=False,
                   timeout=ctx.settings.timeouts.kubeadm_reset),
        ex.command("Remove cluster state", ["rm", "-rf", *(str(path) for path in removed)], phase=PHASE_RESET),
        ex.command(
            "Clear kubelet state",
            ["find", str(cluster_cfg.kubelet_dir), "-mindepth", "1", "-maxdepth", "1", "-exec", "rm", "-rf", "{}", "+"],
            phase=PHASE_RESET,
            critical=False,
        ),
        stop_service_step(ctx, "kubelet", PHASE_RESET),
        stop_service_step(ctx, "containerd", PHASE_RESET, critical=False),
        ex.local("Verify kubeconfig removed", _verify_removed, phase=PHASE_RESET, mutating=False),
    ]


def start_steps(ctx: ManagerContext) -> list[Step]:
    return [
        start_service_step(ctx, "containerd", PHASE_START),
        start_service_step(ctx, "kubelet", PHASE_START),
        wait_api_step(ctx, PHASE_START),
        wait_node_ready_step(ctx),
    ]


def stop_steps(ctx: ManagerContext) -> list[Step]:
    return [
        stop_service_step(ctx, "kubelet", PHASE_STOP),
        stop_service_step(ctx, "containerd", PHASE_STOP),
    ]
