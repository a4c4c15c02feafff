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

"""Read-only cluster status report rendered with rich tables."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable

from rich.table import Table

from node_manager import console, logger
from node_manager.apps import CATALOGUE
from node_manager.constants import (
    EVENT_LIMIT,
    NODE_SERVICES,
    NS_KUBE_SYSTEM,
    SYSTEM_NAMESPACES,
)
from node_manager.context import ManagerContext
from node_manager.detector import detect_managed_apps, inspect_node, refine_with_api
from node_manager.errors import KubeQueryError, TransientFailure
from node_manager.models import NodeState


def _mark(ok: bool) -> str:
    return "[green]ok[/green]" if ok else "[red]not ready[/red]"


def _section(title: str, render: Callable[[], None]) -> None:
    """Render one report section; query failures are shown and the report goes on."""
    try:
        render()
    except (TransientFailure, KubeQueryError) as exc:
        logger.debug("%s section failed: %s", title, exc)
        console.print(f"[yellow]\u26a0\ufe0f  {title}: {exc}[/yellow]")


# ============================================================================
# Sections
# ============================================================================

def _nodes(ctx: ManagerContext) -> None:
    table = Table(title="Nodes")
    for column in ("Name", "Status", "Roles", "Version", "Internal IP", "OS", "Taints"):
        table.add_column(column)
    for node in ctx.kube.nodes():
        table.add_row(
            node.name,
            "[green]Ready[/green]" if node.ready else "[red]NotReady[/red]",
            ",".join(node.roles) or "<none>",
            node.kubelet_version,
            node.internal_ip or node.external_ip or "-",
            node.os_image,
            ", ".join(node.taints) or "-",
        )
    console.print(table)


def _control_plane(ctx: ManagerContext) -> None:
    healthy, detail = ctx.kube.health()
    table = Table(title="Control plane")
    table.add_column("Component")
    table.add_column("Status")
    table.add_column("Detail")
    failing = [line for line in detail.splitlines() if line.startswith("[-]")]
    table.add_row("API server health", _mark(healthy), "; ".join(failing) or ("ok" if healthy else detail))

    coredns = ctx.kube.deployment(NS_KUBE_SYSTEM, "coredns")
    if coredns:
        table.add_row("CoreDNS", _mark(coredns.available), f"{coredns.ready_replicas}/{coredns.replicas} ready")
    else:
        table.add_row("CoreDNS", "[yellow]missing[/yellow]", "-")

    calico_node = ctx.kube.daemonset(NS_KUBE_SYSTEM, "calico-node")
    if calico_node:
        table.add_row("calico-node", _mark(calico_node.desired > 0 and calico_node.ready == calico_node.desired),
                      f"{calico_node.ready}/{calico_node.desired} ready")
    else:
        table.add_row("calico-node", "[yellow]missing[/yellow]", "-")

    controllers = ctx.kube.deployment(NS_KUBE_SYSTEM, "calico-kube-controllers")
    if controllers:
        table.add_row("calico-kube-controllers", _mark(controllers.available),
                      f"{controllers.ready_replicas}/{controllers.replicas} ready")
    else:
        table.add_row("calico-kube-controllers", "[yellow]missing[/yellow]", "-")
    console.print(table)


def _services(ctx: ManagerContext) -> None:
    table = Table(title="Node services")
    table.add_column("Service")
    table.add_column("State")
    for service in NODE_SERVICES:
        state = ctx.output(["systemctl", "is-active", service]) or "inactive"
        table.add_row(service, f"[green]{state}[/green]" if state == "active" else f"[red]{state}[/red]")
    console.print(table)


def _applications(ctx: ManagerContext) -> None:
    namespaces = [ns for ns in ctx.kube.namespaces() if ns.name not in SYSTEM_NAMESPACES]
    if not namespaces:
        console.print("[yellow]\u2139\ufe0f  No application namespaces[/yellow]")
        return
    table = Table(title="Application namespaces")
    for column in ("Namespace", "Pods", "Deployments"):
        table.add_column(column)
    for ns in namespaces:
        phases = Counter(pod.phase for pod in ctx.kube.pods(ns.name))
        deployments = ctx.kube.deployments(ns.name)
        ready = sum(1 for d in deployments if d.available)
        table.add_row(
            ns.name,
            ", ".join(f"{phase}: {count}" for phase, count in sorted(phases.items())) or "-",
            f"{ready}/{len(deployments)} available" if deployments else "-",
        )
    console.print(table)


def _managed_apps(ctx: ManagerContext) -> None:
    detected = detect_managed_apps(ctx.kube, CATALOGUE.values())
    if not detected:
        console.print("[yellow]\u2139\ufe0f  No managed applications installed[/yellow]")
        return
    table = Table(title="Managed applications")
    for column in ("Application", "Namespace", "Ownership"):
        table.add_column(column)
    for item in detected:
        table.add_row(item.app.display_name, item.app.namespace,
                      "[green]verified[/green]" if item.verified else "[yellow]unverified[/yellow]")
    console.print(table)


def _events(ctx: ManagerContext) -> None:
    events = ctx.kube.warning_events(EVENT_LIMIT)
    if not events:
        console.print("[green]\u2705 No warning events[/green]")
        return
    table = Table(title=f"Last {EVENT_LIMIT} warning events")
    for column in ("Time", "Namespace", "Object", "Reason", "Message"):
        table.add_column(column)
    for event in events:
        table.add_row(event.timestamp, event.namespace, event.involved, event.reason, event.message)
    console.print(table)


# ============================================================================
# Report
# ============================================================================

def render_status(ctx: ManagerContext) -> str:
    """Print the cluster status report.

    Sections whose queries fail are reported inline and the report continues.

    Args:
        ctx: Manager context.

    Returns:
        One-line summary of the node state.
    """
    inspection = refine_with_api(inspect_node(ctx.settings.cluster), ctx.kube.api_reachable)
    state = inspection.state
    console.print(f"Node state: [bold]{state.value}[/bold]"
                  f"{' (indeterminate)' if inspection.indeterminate else ''}")
    _section("Node services", lambda: _services(ctx))

    if state is not NodeState.CLUSTER_PRESENT or not inspection.kubeconfig.readable:
        console.print("[yellow]\u26a0\ufe0f  The Kubernetes API is not reachable; cluster details are unavailable[/yellow]")
        return state.value

    endpoint = ctx.kube.api_endpoint() or "unknown"
    version = ctx.kube.server_version() or "unknown"
    console.print(f"API server: [bold]{endpoint}[/bold] (Kubernetes {version})")

    _section("Nodes", lambda: _nodes(ctx))
    _section("Control plane", lambda: _control_plane(ctx))
    _section("Application namespaces", lambda: _applications(ctx))
    _section("Managed applications", lambda: _managed_apps(ctx))
    _section("Events", lambda: _events(ctx))
    return f"{state.value}, API {endpoint}, Kubernetes {version}"
