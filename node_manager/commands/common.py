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

"""Helpers shared by the CLI subcommands: global options, context and exit codes."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer

from node_manager import console
from node_manager.config import load_settings
from node_manager.confirm import InteractiveConfirmer, PresetConfirmer
from node_manager.context import ManagerContext
from node_manager.errors import FatalFailure, NodeManagerError, UserAborted
from node_manager.preflight import require_for_intent
from node_manager.utils import run_command

EXIT_FAILURE = 1
EXIT_ABORTED = 130

# Lines of captured output shown when a critical step fails.
FAILURE_OUTPUT_LINES = 20


@dataclass(frozen=True)
class CliOptions:
    """Global options given before the subcommand."""

    config: Path | None = None
    non_interactive: bool = False
    verbose: bool = False


def build_context(
    typer_ctx: typer.Context,
    preset: PresetConfirmer | None = None,
    addons: dict | None = None,
) -> ManagerContext:
    """Load settings and wire the collaborators for one command.

    Args:
        typer_ctx: Typer context holding the global CliOptions.
        preset: Gate answers given as flags.
        addons: AddonConfig fields overridden by command flags.

    Returns:
        The manager context.

    Raises:
        ConfigError: If the configuration is invalid.
    """
    options: CliOptions = typer_ctx.obj or CliOptions()
    settings = load_settings(options.config)
    if addons:
        settings = dataclasses.replace(settings, addons=settings.addons.model_copy(update=addons))
    preset = preset or PresetConfirmer()
    confirmer = preset if options.non_interactive else InteractiveConfirmer(preset)
    return ManagerContext.create(settings, confirmer, runner=run_command, preflight=require_for_intent)


def addon_flags(skip_dashboard: bool, skip_caddy: bool, with_local_path: bool) -> dict:
    """Translate the extras flags into AddonConfig overrides (unset flags change nothing)."""
    overrides = {}
    if skip_dashboard:
        overrides["install_dashboard"] = False
    if skip_caddy:
        overrides["install_caddy"] = False
    if with_local_path:
        overrides["install_local_path"] = True
    return overrides


def _print_failure_output(exc: FatalFailure) -> None:
    output = (exc.result.stderr or exc.result.stdout).strip()
    if not output:
        return
    console.print("[red]Last output of the failed step:[/red]")
    for line in output.splitlines()[-FAILURE_OUTPUT_LINES:]:
        console.print(line, markup=False, highlight=False)


@contextmanager
def exit_on_error() -> Iterator[None]:
    """Map domain errors to exit codes: 130 for aborts, 1 for failures."""
    try:
        yield
    except (UserAborted, KeyboardInterrupt) as exc:
        reason = str(exc) or "interrupted"
        console.print(f"[yellow]\u26a0\ufe0f  Aborted: {reason}[/yellow]")
        raise typer.Exit(code=EXIT_ABORTED) from None
    except FatalFailure as exc:
        console.print(f"[red]\u274c {exc}[/red]")
        _print_failure_output(exc)
        raise typer.Exit(code=EXIT_FAILURE) from None
    except NodeManagerError as exc:
        console.print(f"[red]\u274c {exc}[/red]")
        raise typer.Exit(code=EXIT_FAILURE) from None
