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

"""Cluster subcommands (init, modify, start, stop, status, destroy)."""

from __future__ import annotations

from enum import Enum

import typer

from node_manager.commands.common import addon_flags, build_context, exit_on_error
from node_manager.confirm import Gate, PresetConfirmer
from node_manager.models import ActionIntent, IntentKind
from node_manager.orchestrator import run_intent

app = typer.Typer(help="Single-node cluster lifecycle.")


class OnExisting(str, Enum):
    MODIFY = "modify"
    RESET = "reset"
    ABORT = "abort"


def _run(typer_ctx: typer.Context, kind: IntentKind, preset: PresetConfirmer | None = None,
         addons: dict | None = None) -> None:
    with exit_on_error():
        ctx = build_context(typer_ctx, preset, addons)
        run_intent(ctx, ActionIntent(kind))


@app.command()
def init(
    ctx: typer.Context,
    on_existing: OnExisting | None = typer.Option(
        None, "--on-existing", help="What to do when a cluster already exists (default: ask)"),
    confirm_token: str | None = typer.Option(
        None, "--confirm-token", help="Type 'reset' here to approve a reset without a prompt"),
    skip_dashboard: bool = typer.Option(
        False, "--skip-dashboard", help="Skip the Kubernetes Dashboard"),
    skip_caddy: bool = typer.Option(
        False, "--skip-caddy", help="Skip the Caddy example service"),
    with_local_path: bool = typer.Option(
        False, "--with-local-path", help="Install the local path provisioner"),
) -> None:
    """Initialise a single-node cluster on this machine."""
    preset = PresetConfirmer(
        choices={Gate.EXISTING_CLUSTER: on_existing.value} if on_existing else {},
        tokens={Gate.RESET: confirm_token} if confirm_token is not None else {},
    )
    _run(ctx, IntentKind.INIT, preset, addon_flags(skip_dashboard, skip_caddy, with_local_path))


@app.command()
def modify(
    ctx: typer.Context,
    skip_dashboard: bool = typer.Option(
        False, "--skip-dashboard", help="Skip the Kubernetes Dashboard"),
    skip_caddy: bool = typer.Option(
        False, "--skip-caddy", help="Skip the Caddy example service"),
    with_local_path: bool = typer.Option(
        False, "--with-local-path", help="Install the local path provisioner"),
) -> None:
    """Re-apply networking, scheduling and extras on the existing cluster."""
    _run(ctx, IntentKind.MODIFY, addons=addon_flags(skip_dashboard, skip_caddy, with_local_path))


@app.command()
def start(ctx: typer.Context) -> None:
    """Start containerd and kubelet and wait for the node."""
    _run(ctx, IntentKind.START)


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop kubelet and containerd."""
    _run(ctx, IntentKind.STOP)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show node, control plane, application and event status."""
    _run(ctx, IntentKind.STATUS)


@app.command()
def destroy(
    ctx: typer.Context,
    confirm_token: str | None = typer.Option(
        None, "--confirm-token", help="Type 'destroy' here to approve without a prompt"),
) -> None:
    """Reset the cluster and remove its state from this node."""
    preset = PresetConfirmer(tokens={Gate.DESTROY: confirm_token} if confirm_token is not None else {})
    _run(ctx, IntentKind.DESTROY, preset)
