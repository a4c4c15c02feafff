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

"""Application subcommands (list, install, uninstall)."""

from __future__ import annotations

import typer
from rich.table import Table

from node_manager import console
from node_manager.apps import CATALOGUE
from node_manager.commands.common import build_context, exit_on_error
from node_manager.confirm import Gate, PresetConfirmer
from node_manager.detector import detect_managed_apps
from node_manager.errors import KubeQueryError, TransientFailure
from node_manager.models import ActionIntent, IntentKind, NodeState
from node_manager.orchestrator import inspect, run_intent

app = typer.Typer(help="Self-hosted application management.")


@app.command("list")
def list_apps(ctx: typer.Context) -> None:
    """List the application catalogue and what is installed."""
    with exit_on_error():
        manager = build_context(ctx)
        inspection = inspect(manager)
        installed: dict[str, bool] = {}
        if inspection.state is NodeState.CLUSTER_PRESENT and inspection.kubeconfig.readable:
            try:
                installed = {d.app.slug: d.verified for d in detect_managed_apps(manager.kube, CATALOGUE.values())}
            except (TransientFailure, KubeQueryError) as exc:
                console.print(f"[yellow]\u26a0\ufe0f  Could not check installed applications: {exc}[/yellow]")

        table = Table(title="Applications")
        for column in ("Name", "Application", "Image", "Ports", "Installed"):
            table.add_column(column)
        for slug, definition in CATALOGUE.items():
            if slug not in installed:
                state = "-"
            else:
                state = "[green]yes[/green]" if installed[slug] else "[yellow]yes (unverified)[/yellow]"
            ports = ", ".join(f"{port.port}/{port.scheme}" for port in definition.ports)
            table.add_row(slug, definition.display_name, definition.image, ports, state)
        console.print(table)


@app.command()
def install(
    ctx: typer.Context,
    names: list[str] | None = typer.Argument(None, help="Applications to install (default: ask)"),
    all_apps: bool = typer.Option(False, "--all", help="Install every catalogue application"),
) -> None:
    """Install applications from the catalogue."""
    preset = PresetConfirmer(selection="all" if all_apps else "")
    with exit_on_error():
        manager = build_context(ctx, preset)
        run_intent(manager, ActionIntent(IntentKind.INSTALL_APPS, frozenset(names or ())))


@app.command()
def uninstall(
    ctx: typer.Context,
    names: list[str] | None = typer.Argument(None, help="Applications to remove (default: ask)"),
    all_apps: bool = typer.Option(False, "--all", help="Remove every installed application"),
    delete_resources: bool = typer.Option(
        False, "--delete-resources", help="Approve namespace and volume deletion without a prompt"),
    delete_unverified: bool = typer.Option(
        False, "--delete-unverified", help="Also delete namespaces not labelled as managed by this tool"),
    delete_host_data: bool = typer.Option(
        False, "--delete-host-data", help="Also delete the host data directories"),
) -> None:
    """Remove installed applications."""
    approved = {
        Gate.DELETE_RESOURCES: delete_resources,
        Gate.DELETE_UNVERIFIED: delete_unverified,
        Gate.DELETE_HOST_DATA: delete_host_data,
    }
    preset = PresetConfirmer(
        approved=frozenset(gate for gate, flag in approved.items() if flag),
        selection="all" if all_apps else "",
    )
    with exit_on_error():
        manager = build_context(ctx, preset)
        run_intent(manager, ActionIntent(IntentKind.UNINSTALL_APPS, frozenset(names or ())))
