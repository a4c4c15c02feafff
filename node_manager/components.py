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

"""Calico, Kubernetes Dashboard, Caddy example and local path provisioner installation."""

from __future__ import annotations

import json
import os
import time

from node_manager import console, manifests
from node_manager.constants import (
    APPLY_MAX_ATTEMPTS,
    CADDY_DEPLOYMENT,
    CADDY_SERVICE,
    CALICO_MANIFEST_URL,
    CALICO_SELECTORS,
    DASHBOARD_ADMIN_USER,
    DASHBOARD_MANIFEST_URL,
    DASHBOARD_PATCH_MAX_RETRIES,
    DASHBOARD_PATCH_RETRY_SECONDS,
    DASHBOARD_SELECTOR,
    DASHBOARD_SERVICE,
    DEFAULT_STORAGE_CLASS_ANNOTATION,
    LOCAL_PATH_DEPLOYMENT,
    LOCAL_PATH_MANIFEST_URL,
    LOCAL_PATH_STORAGE_CLASS,
    NS_DASHBOARD,
    NS_KUBE_SYSTEM,
    NS_LOCAL_PATH,
)
from node_manager.context import ManagerContext
from node_manager.errors import NodeManagerError
from node_manager.models import RetryPolicy, Step

PHASE_CNI = "Installing Calico"
PHASE_DASHBOARD = "Installing the Kubernetes Dashboard"
PHASE_CADDY = "Deploying the Caddy example"
PHASE_LOCAL_PATH = "Installing the local path provisioner"

APPLY_RETRY = RetryPolicy(max_attempts=APPLY_MAX_ATTEMPTS, backoff="exponential", delay=5, max_delay=60)


def node_address(ctx: ManagerContext) -> str:
    """Address to reach NodePort services: InternalIP, ExternalIP, then ``hostname -I``."""
    address = ctx.kube.node_ip()
    if address:
        return address
    host_ips = ctx.output(["hostname", "-I"]).split()
    return host_ips[0] if host_ips else "<node-ip>"


def apply_url_step(ctx: ManagerContext, name: str, url: str, phase: str, critical: bool = True) -> Step:
    return ctx.executor.command(name, ctx.kubectl("apply", "-f", url), phase=phase, critical=critical,
                                retry=APPLY_RETRY, idempotent_create=True)


def apply_manifest_step(ctx: ManagerContext, name: str, documents: list[dict], phase: str,
                        critical: bool = True) -> Step:
    return ctx.executor.command(name, ctx.kubectl("apply", "-f", "-"), phase=phase, critical=critical,
                                retry=APPLY_RETRY, input_text=manifests.render(*documents),
                                idempotent_create=True)


# ============================================================================
# Calico
# ============================================================================

def cni_steps(ctx: ManagerContext) -> list[Step]:
    """Apply Calico and wait for its controllers and node agents."""
    cluster_cfg = ctx.settings.cluster
    timeouts = ctx.settings.timeouts
    steps = [
        apply_url_step(ctx, "Apply Calico manifest",
                       CALICO_MANIFEST_URL.format(version=cluster_cfg.calico_version), PHASE_CNI),
    ]
    for selector in CALICO_SELECTORS:
        steps.append(ctx.executor.waiting(
            f"Wait for {selector.split('=', 1)[1]} pods",
            lambda selector=selector: ctx.kube.pods_readiness(NS_KUBE_SYSTEM, selector),
            phase=PHASE_CNI,
            timeout=timeouts.calico_wait,
            interval=timeouts.poll_interval,
        ))
    return steps


# ============================================================================
# Kubernetes Dashboard
# ============================================================================

def _token_still_valid(ctx: ManagerContext) -> bool:
    addons = ctx.settings.addons
    try:
        age = time.time() - addons.dashboard_token_file.stat().st_mtime
    except OSError:
        return False
    return age < addons.dashboard_token_duration


def write_dashboard_token(ctx: ManagerContext) -> str:
    """Create an access token for the dashboard service account and store it owner-only.

    Returns:
        Path of the token file.

    Raises:
        NodeManagerError: If the token cannot be created.
    """
    addons = ctx.settings.addons
    result = ctx.executor.run_step(
        ctx.kubectl("-n", NS_DASHBOARD, "create", "token", DASHBOARD_ADMIN_USER,
                    f"--duration={addons.dashboard_token_duration}s"),
        retry_policy=RetryPolicy(max_attempts=3, delay=DASHBOARD_PATCH_RETRY_SECONDS),
        name="kubectl create token",
    )
    token = result.stdout.strip()
    if not result.ok or not token:
        raise NodeManagerError(f"Could not create dashboard token: {(result.stderr or result.stdout).strip()}")
    fd = os.open(addons.dashboard_token_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(f"{token}\n")
    os.chmod(addons.dashboard_token_file, 0o600)
    return str(addons.dashboard_token_file)


def report_dashboard_access(ctx: ManagerContext) -> str:
    service = ctx.kube.service(NS_DASHBOARD, DASHBOARD_SERVICE)
    token_file = ctx.settings.addons.dashboard_token_file
    if service and service.type == "NodePort" and service.node_ports:
        url = f"https://{node_address(ctx)}:{next(iter(service.node_ports.values()))}"
        console.print(f"[green]Dashboard: {url}[/green]")
    else:
        url = ("http://localhost:8001/api/v1/namespaces/kubernetes-dashboard/services/"
               "https:kubernetes-dashboard:/proxy/")
        console.print("[yellow]\u2139\ufe0f  Dashboard is only reachable inside the cluster. Run "
                      f"'kubectl --kubeconfig {ctx.settings.cluster.kubeconfig} proxy' and open {url}[/yellow]")
    console.print(f"[yellow]   Access token stored in {token_file}[/yellow]")
    return url


def dashboard_steps(ctx: ManagerContext) -> list[Step]:
    """Optional dashboard install; every failure here is a warning."""
    addons = ctx.settings.addons
    timeouts = ctx.settings.timeouts
    ex = ctx.executor
    steps = [
        apply_url_step(ctx, "Apply Dashboard manifest",
                       DASHBOARD_MANIFEST_URL.format(version=addons.dashboard_version), PHASE_DASHBOARD,
                       critical=False),
    ]
    if addons.dashboard_service_type == "NodePort":
        patch = json.dumps({"spec": {"type": "NodePort"}})

        def _is_node_port() -> bool:
            service = ctx.kube.service(NS_DASHBOARD, DASHBOARD_SERVICE)
            return service is not None and service.type == "NodePort"

        steps.append(ex.command(
            "Expose Dashboard as NodePort",
            ctx.kubectl("-n", NS_DASHBOARD, "patch", "service", DASHBOARD_SERVICE, "-p", patch),
            phase=PHASE_DASHBOARD,
            critical=False,
            retry=RetryPolicy(max_attempts=DASHBOARD_PATCH_MAX_RETRIES, delay=DASHBOARD_PATCH_RETRY_SECONDS),
            satisfied=_is_node_port,
        ))
    steps += [
        apply_manifest_step(ctx, "Apply Dashboard access RBAC", manifests.dashboard_rbac(), PHASE_DASHBOARD,
                            critical=False),
        ex.waiting("Wait for Dashboard pods",
                   lambda: ctx.kube.pods_readiness(NS_DASHBOARD, DASHBOARD_SELECTOR),
                   phase=PHASE_DASHBOARD, critical=False,
                   timeout=timeouts.dashboard_wait, interval=timeouts.poll_interval),
        ex.local("Write Dashboard access token", lambda: write_dashboard_token(ctx), phase=PHASE_DASHBOARD,
                 critical=False, satisfied=lambda: _token_still_valid(ctx)),
        ex.local("Report Dashboard access", lambda: report_dashboard_access(ctx), phase=PHASE_DASHBOARD,
                 critical=False, mutating=False),
    ]
    return steps


# ============================================================================
# Caddy example
# ============================================================================

def report_service_access(ctx: ManagerContext, namespace: str, service_name: str, label: str,
                          scheme: str = "http") -> str:
    service = ctx.kube.service(namespace, service_name)
    if not service or not service.node_ports:
        raise NodeManagerError(f"Service {namespace}/{service_name} has no NodePort")
    address = node_address(ctx)
    urls = [f"{scheme}://{address}:{port}" for port in service.node_ports.values()]
    console.print(f"[green]{label}: {', '.join(urls)}[/green]")
    return ", ".join(urls)


def caddy_steps(ctx: ManagerContext) -> list[Step]:
    addons = ctx.settings.addons
    timeouts = ctx.settings.timeouts
    ns = addons.caddy_namespace
    return [
        apply_manifest_step(ctx, "Apply Caddy example",
                            manifests.caddy(ns, addons.caddy_image, CADDY_DEPLOYMENT, CADDY_SERVICE),
                            PHASE_CADDY, critical=False),
        ctx.executor.waiting("Wait for Caddy deployment",
                             lambda: ctx.kube.deployment_readiness(ns, CADDY_DEPLOYMENT),
                             phase=PHASE_CADDY, critical=False,
                             timeout=timeouts.deployment_wait, interval=timeouts.poll_interval),
        ctx.executor.local("Report Caddy access",
                           lambda: report_service_access(ctx, ns, CADDY_SERVICE, "Caddy example"),
                           phase=PHASE_CADDY, critical=False, mutating=False),
    ]


# ============================================================================
# Local path provisioner
# ============================================================================

def _is_default_class(ctx: ManagerContext) -> bool:
    annotations = ctx.kube.storage_class_annotations(LOCAL_PATH_STORAGE_CLASS) or {}
    return annotations.get(DEFAULT_STORAGE_CLASS_ANNOTATION) == "true"


def local_path_steps(ctx: ManagerContext) -> list[Step]:
    addons = ctx.settings.addons
    timeouts = ctx.settings.timeouts
    steps = [
        apply_url_step(ctx, "Apply local path provisioner manifest",
                       LOCAL_PATH_MANIFEST_URL.format(version=addons.local_path_version), PHASE_LOCAL_PATH,
                       critical=False),
        ctx.executor.waiting("Wait for local path provisioner",
                             lambda: ctx.kube.deployment_readiness(NS_LOCAL_PATH, LOCAL_PATH_DEPLOYMENT),
                             phase=PHASE_LOCAL_PATH, critical=False,
                             timeout=timeouts.deployment_wait, interval=timeouts.poll_interval),
    ]
    if addons.local_path_default_class:
        patch = json.dumps({"metadata": {"annotations": {DEFAULT_STORAGE_CLASS_ANNOTATION: "true"}}})
        steps.append(ctx.executor.command(
            "Make local-path the default StorageClass",
            ctx.kubectl("patch", "storageclass", LOCAL_PATH_STORAGE_CLASS, "-p", patch),
            phase=PHASE_LOCAL_PATH,
            critical=False,
            satisfied=lambda: _is_default_class(ctx),
        ))
    return steps


def extras_steps(ctx: ManagerContext) -> list[Step]:
    """Optional extras enabled in the addon configuration."""
    addons = ctx.settings.addons
    steps: list[Step] = []
    if addons.install_dashboard:
        steps += dashboard_steps(ctx)
    if addons.install_caddy:
        steps += caddy_steps(ctx)
    if addons.install_local_path:
        steps += local_path_steps(ctx)
    return steps
