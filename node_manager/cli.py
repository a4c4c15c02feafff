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

"""
cli.py - Single-node Kubernetes cluster management.

Subcommands:
    cluster    Cluster lifecycle (init, modify, start, stop, status, destroy)
    apps       Self-hosted applications (list, install, uninstall)
    check      Host compatibility check

Environment Variables:
    Configuration can be overridden via NODE_MANAGER_* environment variables:
    - NODE_MANAGER_K8S_VERSION (default: from dependencies.yaml)
    - NODE_MANAGER_POD_NETWORK_CIDR (default: 10.244.0.0/16)
    - NODE_MANAGER_INSTALL_DASHBOARD (default: true)
    - NODE_MANAGER_TIMEOUT_NODE_READY (default: 300)
    - PUID / PGID (default: 1000)
    - And more (see config classes for full list)

Examples:
    # Check the host, then initialise a cluster
    node-manager check
    node-manager cluster init

    # Scripted reset of an existing cluster
    node-manager --non-interactive cluster init --on-existing reset --confirm-token reset

    # Install two applications
    node-manager apps install gitea vaultwarden

    # Remove an application and its host data
    node-manager apps uninstall gitea --delete-resources --delete-host-data

Exit codes: 0 success, 1 failure, 130 aborted by the operator.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import typer

from node_manager import console
from node_manager.commands import apps_cmd, check_cmd, cluster_cmd
from node_manager.commands.common import CliOptions

app = typer.Typer(
    help="Single-node Kubernetes cluster management.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", help="YAML config file with cluster, addons, apps and timeouts sections"),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Never prompt; gates not answered by flags are declined"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Initialize logging and global options for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    ctx.obj = CliOptions(config=config, non_interactive=non_interactive, verbose=verbose)


app.add_typer(cluster_cmd.app, name="cluster")
app.add_typer(apps_cmd.app, name="apps")
app.command("check")(check_cmd.check)


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
