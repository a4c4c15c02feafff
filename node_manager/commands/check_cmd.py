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

"""Host compatibility check subcommand."""

from __future__ import annotations

import typer

from node_manager import console
from node_manager.commands.common import EXIT_FAILURE
from node_manager.preflight import print_checks, run_checks


def check() -> None:
    """Check that this host can run a single-node cluster."""
    results = run_checks()
    print_checks(results)
    failures = [result for result in results if result.required and not result.ok]
    warnings = [result for result in results if not result.required and not result.ok]
    if failures:
        console.print(f"[red]\u274c {len(failures)} required check(s) failed[/red]")
        raise typer.Exit(code=EXIT_FAILURE)
    if warnings:
        console.print(f"[yellow]\u26a0\ufe0f  Compatible, with {len(warnings)} recommendation(s) not met[/yellow]")
    else:
        console.print("[green]\u2705 This host is compatible[/green]")
