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

"""Operating system preparation, container runtime and Kubernetes tool installation."""

from __future__ import annotations

from collections.abc import Callable

from node_manager.constants import (
    APT_KEYRINGS_DIR,
    APT_MAX_ATTEMPTS,
    APT_PREREQUISITES,
    CONTAINERD_CONFIG,
    DOCKER_APT_LIST,
    DOCKER_APT_URL,
    DOCKER_KEYRING,
    KERNEL_MODULES,
    KERNEL_MODULES_FILE,
    KUBERNETES_APT_LIST,
    KUBERNETES_APT_URL,
    KUBERNETES_KEYRING,
    KUBERNETES_PACKAGES,
    SYSCTL_FILE,
    SYSCTL_SETTINGS,
)
from node_manager.context import ManagerContext
from node_manager.models import Readiness, RetryPolicy, Step

PHASE_OS = "Preparing the operating system"
PHASE_RUNTIME = "Installing the container runtime"
PHASE_TOOLS = "Installing Kubernetes tools"

APT_RETRY = RetryPolicy(max_attempts=APT_MAX_ATTEMPTS, backoff="exponential", delay=5, max_delay=30)
APT_ENV = ("env", "DEBIAN_FRONTEND=noninteractive")
OS_ID = '$(. /etc/os-release && echo "$ID")'


def _file_exists(ctx: ManagerContext, path) -> bool:
    return ctx.check(["test", "-e", str(path)])


def _file_contains(ctx: ManagerContext, path, text: str) -> bool:
    return ctx.check(["grep", "-qxF", text, str(path)])


def _apt_install(ctx: ManagerContext, name: str, packages: list[str], phase: str,
                 satisfied: Callable[[], bool] | None = None) -> Step:
    return ctx.executor.command(
        name,
        [*APT_ENV, "apt-get", "install", "-y", "--allow-change-held-packages", *packages],
        phase=phase,
        timeout=ctx.settings.timeouts.package_install,
        retry=APT_RETRY,
        satisfied=satisfied,
    )


def _apt_update(ctx: ManagerContext, phase: str) -> Step:
    return ctx.executor.command("Refresh package index", [*APT_ENV, "apt-get", "update"], phase=phase,
                                retry=APT_RETRY)


# ============================================================================
# Operating system
# ============================================================================

def prepare_os_steps(ctx: ManagerContext) -> list[Step]:
    """Prerequisite packages, swap off, kernel modules and sysctl settings."""
    ex = ctx.executor
    modules = "".join(f"{module}\n" for module in KERNEL_MODULES)
    sysctl = "".join(f"{key} = {value}\n" for key, value in SYSCTL_SETTINGS.items())
    steps = [
        _apt_update(ctx, PHASE_OS),
        _apt_install(ctx, "Install prerequisite packages", list(APT_PREREQUISITES), PHASE_OS),
        ex.command("Disable swap", ["swapoff", "-a"], phase=PHASE_OS,
                   satisfied=lambda: not ctx.output(["swapon", "--show", "--noheadings"])),
        ex.command("Disable swap in /etc/fstab", ["sed", "-i", r"/\sswap\s/ s/^\([^#]\)/#\1/", "/etc/fstab"],
                   phase=PHASE_OS),
        ex.command("Persist kernel modules", ["tee", str(KERNEL_MODULES_FILE)], phase=PHASE_OS,
                   input_text=modules,
                   satisfied=lambda: all(_file_contains(ctx, KERNEL_MODULES_FILE, m) for m in KERNEL_MODULES)),
    ]
    steps += [
        ex.command(f"Load kernel module {module}", ["modprobe", module], phase=PHASE_OS)
        for module in KERNEL_MODULES
    ]
    steps += [
        ex.command("Persist sysctl settings", ["tee", str(SYSCTL_FILE)], phase=PHASE_OS, input_text=sysctl),
        ex.command("Apply sysctl settings", ["sysctl", "--system"], phase=PHASE_OS),
    ]
    return steps


# ============================================================================
# Container runtime
# ============================================================================

def install_runtime_steps(ctx: ManagerContext) -> list[Step]:
    """containerd from the Docker apt repository, configured for the systemd cgroup driver."""
    ex = ctx.executor
    cluster_cfg = ctx.settings.cluster
    repo_line = (
        f'echo "deb [arch=$(dpkg --print-architecture) signed-by={DOCKER_KEYRING}] '
        f'{DOCKER_APT_URL}/{OS_ID} $(. /etc/os-release && echo "$VERSION_CODENAME") stable" '
        f"> {DOCKER_APT_LIST}"
    )
    return [
        ex.command("Create apt keyring directory", ["install", "-m", "0755", "-d", str(APT_KEYRINGS_DIR)],
                   phase=PHASE_RUNTIME),
        ex.command(
            "Add Docker apt key",
            ["bash", "-c",
             f"curl -fsSL {DOCKER_APT_URL}/{OS_ID}/gpg | gpg --dearmor --yes -o {DOCKER_KEYRING}"],
            phase=PHASE_RUNTIME,
            retry=APT_RETRY,
            satisfied=lambda: _file_exists(ctx, DOCKER_KEYRING),
        ),
        ex.command("Add Docker apt repository", ["bash", "-c", repo_line], phase=PHASE_RUNTIME,
                   satisfied=lambda: _file_exists(ctx, DOCKER_APT_LIST)),
        _apt_update(ctx, PHASE_RUNTIME),
        _apt_install(ctx, "Install containerd", [f"containerd.io={cluster_cfg.containerd_version}.*"],
                     PHASE_RUNTIME),
        ex.command("Create containerd config directory", ["mkdir", "-p", str(CONTAINERD_CONFIG.parent)],
                   phase=PHASE_RUNTIME),
        ex.command(
            "Write containerd config",
            ["bash", "-c",
             "containerd config default | sed 's/SystemdCgroup = false/SystemdCgroup = true/' "
             f"> {CONTAINERD_CONFIG}"],
            phase=PHASE_RUNTIME,
            satisfied=lambda: ctx.check(["grep", "-q", "SystemdCgroup = true", str(CONTAINERD_CONFIG)]),
        ),
        ex.command("Restart containerd", ["systemctl", "restart", "containerd"], phase=PHASE_RUNTIME),
        ex.command("Enable containerd", ["systemctl", "enable", "containerd"], phase=PHASE_RUNTIME,
                   satisfied=lambda: ctx.check(["systemctl", "is-enabled", "--quiet", "containerd"])),
        ex.waiting(
            "Wait for containerd socket",
            lambda: Readiness.READY if _file_exists(ctx, cluster_cfg.cri_socket) else Readiness.NOT_READY,
            phase=PHASE_RUNTIME,
            timeout=30,
            interval=2,
        ),
    ]


# ============================================================================
# Kubernetes tools
# ============================================================================

def _tools_installed(ctx: ManagerContext) -> bool:
    return ctx.output(["kubeadm", "version", "-o", "short"]).lstrip("v") == ctx.settings.cluster.k8s_semver


def install_tools_steps(ctx: ManagerContext) -> list[Step]:
    """kubelet, kubeadm and kubectl pinned to the configured version and held."""
    ex = ctx.executor
    cluster_cfg = ctx.settings.cluster
    repo_url = KUBERNETES_APT_URL.format(minor=cluster_cfg.k8s_minor)
    packages = [f"{package}={cluster_cfg.k8s_semver}-*" for package in KUBERNETES_PACKAGES]
    return [
        ex.command(
            "Add Kubernetes apt key",
            ["bash", "-c", f"curl -fsSL {repo_url}Release.key | gpg --dearmor --yes -o {KUBERNETES_KEYRING}"],
            phase=PHASE_TOOLS,
            retry=APT_RETRY,
        ),
        ex.command("Add Kubernetes apt repository", ["tee", str(KUBERNETES_APT_LIST)], phase=PHASE_TOOLS,
                   input_text=f"deb [signed-by={KUBERNETES_KEYRING}] {repo_url} /\n"),
        _apt_update(ctx, PHASE_TOOLS),
        _apt_install(ctx, "Install kubelet, kubeadm and kubectl", packages, PHASE_TOOLS,
                     satisfied=lambda: _tools_installed(ctx)),
        ex.command("Hold Kubernetes packages", ["apt-mark", "hold", *KUBERNETES_PACKAGES], phase=PHASE_TOOLS),
        ex.command("Enable kubelet", ["systemctl", "enable", "kubelet"], phase=PHASE_TOOLS,
                   satisfied=lambda: ctx.check(["systemctl", "is-enabled", "--quiet", "kubelet"])),
    ]
