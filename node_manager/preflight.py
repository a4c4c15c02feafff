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

"""Host compatibility checks run before any plan touches the node."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from rich.table import Table

from node_manager import console
from node_manager.constants import (
    MIN_CPUS,
    MIN_DISK_GB,
    MIN_MEMORY_GB,
    OPTIONAL_COMMANDS,
    OS_RELEASE_FILE,
    SUPPORTED_OS_IDS,
)
from node_manager.errors import PreconditionError
from node_manager.models import IntentKind
from node_manager.utils import command_exists

# Commands each intent shells out to.
INTENT_COMMANDS: dict[IntentKind, tuple[str, ...]] = {
    IntentKind.INIT: ("apt-get", "curl", "gpg", "systemctl", "modprobe", "sysctl", "swapoff"),
    IntentKind.RESET_AND_INIT: ("apt-get", "curl", "gpg", "systemctl", "modprobe", "sysctl", "swapoff",
                                "kubeadm"),
    IntentKind.MODIFY: ("kubectl", "systemctl"),
    IntentKind.START: ("systemctl", "kubectl"),
    IntentKind.STOP: ("systemctl",),
    IntentKind.DESTROY: ("kubeadm", "systemctl"),
    IntentKind.STATUS: ("kubectl",),
    IntentKind.INSTALL_APPS: ("kubectl",),
    IntentKind.UNINSTALL_APPS: ("kubectl",),
}

READ_ONLY_INTENTS = frozenset({IntentKind.STATUS})


@dataclass(frozen=True)
class CheckResult:
    """Outcome of one compatibility check.

    Attributes:
        name: What was checked.
        ok: Whether the check passed.
        detail: Observed value or failure reason.
        required: Whether a failure blocks mutating intents.
    """

    name: str
    ok: bool
    detail: str
    required: bool = True


def read_os_release(path: Path = OS_RELEASE_FILE) -> dict[str, str]:
    """Parse an os-release file into a dict (quotes stripped)."""
    values: dict[str, str] = {}
    try:
        text = path.read_text()
    except OSError:
        return values
    for line in text.splitlines():
        if "=" not in line or line.lstrip().startswith("#"):
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def check_root() -> CheckResult:
    is_root = os.geteuid() == 0
    return CheckResult("root privileges", is_root, "running as root" if is_root else "not running as root")


def check_os(path: Path = OS_RELEASE_FILE) -> CheckResult:
    release = read_os_release(path)
    os_id = release.get("ID", "")
    like = set(release.get("ID_LIKE", "").split())
    ok = os_id in SUPPORTED_OS_IDS or bool(like & SUPPORTED_OS_IDS)
    return CheckResult("operating system", ok, release.get("PRETTY_NAME", os_id or "unknown"))


def check_commands(commands: tuple[str, ...], required: bool = True) -> list[CheckResult]:
    results = []
    for cmd in commands:
        found = command_exists(cmd)
        results.append(CheckResult(f"command {cmd}", found, "found" if found else "missing", required))
    return results


def _memory_gb() -> float:
    try:
        with open("/proc/meminfo") as f:
            for line in f:
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) / (1024 * 1024)
    except (OSError, ValueError, IndexError):
        pass
    return 0.0


def check_resources(root: Path = Path("/")) -> list[CheckResult]:
    """CPU, memory and disk recommendations; failures are warnings only."""
    cpus = os.cpu_count() or 0
    memory = _memory_gb()
    disk = shutil.disk_usage(root).free / (1024 ** 3)
    return [
        CheckResult("CPU cores", cpus >= MIN_CPUS, f"{cpus} (recommended {MIN_CPUS}+)", required=False),
        CheckResult("memory", memory >= MIN_MEMORY_GB, f"{memory:.1f} GB (recommended {MIN_MEMORY_GB}+)",
                    required=False),
        CheckResult("free disk", disk >= MIN_DISK_GB, f"{disk:.1f} GB (recommended {MIN_DISK_GB}+)",
                    required=False),
    ]


def run_checks() -> list[CheckResult]:
    """Run the full compatibility check."""
    required = sorted({cmd for cmds in INTENT_COMMANDS.values() for cmd in cmds})
    results = [check_os(), check_root()]
    results += check_commands(tuple(required))
    results += check_commands(OPTIONAL_COMMANDS, required=False)
    results += check_resources()
    return results


def print_checks(results: list[CheckResult]) -> None:
    table = Table(title="Host compatibility")
    table.add_column("Check")
    table.add_column("Result")
    table.add_column("Detail")
    for result in results:
        if result.ok:
            status = "[green]ok[/green]"
        elif result.required:
            status = "[red]fail[/red]"
        else:
            status = "[yellow]warn[/yellow]"
        table.add_row(result.name, status, result.detail)
    console.print(table)


def require_for_intent(kind: IntentKind) -> None:
    """Preflight gate run by the planner before any step.

    Args:
        kind: Intent about to be planned.

    Raises:
        PreconditionError: If root is required and missing, or a needed command is absent.
    """
    results = check_commands(INTENT_COMMANDS[kind])
    if kind not in READ_ONLY_INTENTS:
        results.insert(0, check_root())
    failures = [result for result in results if result.required and not result.ok]
    if failures:
        details = ", ".join(f"{result.name} ({result.detail})" for result in failures)
        raise PreconditionError(f"Preflight failed for '{kind.value}': {details}")
