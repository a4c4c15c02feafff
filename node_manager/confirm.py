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

"""Confirmation gates for destructive actions.

The planner asks through the Confirmer protocol. Each gate is answered
separately: approving one never approves another.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from rich.prompt import Confirm, Prompt
from rich.table import Table

from node_manager import console


class Gate(str, Enum):
    """Named confirmation gates."""

    EXISTING_CLUSTER = "existing-cluster"
    RESET = "reset"
    DESTROY = "destroy"
    DELETE_RESOURCES = "delete-resources"
    DELETE_UNVERIFIED = "delete-unverified"
    DELETE_HOST_DATA = "delete-host-data"


# Typed tokens the operator must enter to pass the typed gates.
GATE_TOKENS = {
    Gate.RESET: "reset",
    Gate.DESTROY: "destroy",
}


class Confirmer(Protocol):
    """Capability the planner uses to ask the operator."""

    def choose(self, gate: Gate, prompt: str, choices: Sequence[str], default: str) -> str: ...

    def confirm(self, gate: Gate, prompt: str) -> bool: ...

    def confirm_typed(self, gate: Gate, prompt: str, token: str) -> bool: ...

    def select(self, prompt: str, options: Sequence[str]) -> list[int]: ...


def parse_selection(raw: str, count: int) -> tuple[list[int], list[str]]:
    """Parse a menu answer such as ``"1 3 5"``, ``"all"`` or ``"none"``.

    Args:
        raw: Text entered by the operator.
        count: Number of menu entries (numbered from 1).

    Returns:
        Tuple of (sorted zero-based indices without duplicates, invalid tokens).
    """
    text = raw.strip().lower()
    if text in ("", "n", "none"):
        return [], []
    if text in ("a", "all"):
        return list(range(count)), []
    indices: set[int] = set()
    invalid: list[str] = []
    for token in re.split(r"[\s,]+", text):
        if token.isdigit() and 1 <= int(token) <= count:
            indices.add(int(token) - 1)
        elif token:
            invalid.append(token)
    return sorted(indices), invalid


@dataclass
class PresetConfirmer:
    """Answers gates from values fixed up front (flags, tests).

    Unanswered gates are declined: ``choose`` returns ``default``,
    ``confirm`` and ``confirm_typed`` return False.

    Attributes:
        choices: Pre-selected answer per choice gate.
        approved: Gates answered "yes".
        tokens: Typed tokens supplied per typed gate.
        selection: Menu answer used by ``select``.
    """

    choices: Mapping[Gate, str] = field(default_factory=dict)
    approved: frozenset[Gate] = frozenset()
    tokens: Mapping[Gate, str] = field(default_factory=dict)
    selection: str = ""

    def choose(self, gate: Gate, prompt: str, choices: Sequence[str], default: str) -> str:
        answer = self.choices.get(gate, default)
        return answer if answer in choices else default

    def confirm(self, gate: Gate, prompt: str) -> bool:
        return gate in self.approved

    def confirm_typed(self, gate: Gate, prompt: str, token: str) -> bool:
        return self.tokens.get(gate) == token

    def select(self, prompt: str, options: Sequence[str]) -> list[int]:
        indices, _ = parse_selection(self.selection, len(options))
        return indices


class InteractiveConfirmer:
    """Asks on the terminal, unless a preset already answers the gate."""

    def __init__(self, preset: PresetConfirmer | None = None) -> None:
        self.preset = preset or PresetConfirmer()

    def choose(self, gate: Gate, prompt: str, choices: Sequence[str], default: str) -> str:
        if gate in self.preset.choices:
            return self.preset.choose(gate, prompt, choices, default)
        return Prompt.ask(prompt, choices=list(choices), default=default, console=console)

    def confirm(self, gate: Gate, prompt: str) -> bool:
        if gate in self.preset.approved:
            return True
        return Confirm.ask(prompt, default=False, console=console)

    def confirm_typed(self, gate: Gate, prompt: str, token: str) -> bool:
        if gate in self.preset.tokens:
            return self.preset.confirm_typed(gate, prompt, token)
        console.print(f"[red]{prompt}[/red]")
        answer = Prompt.ask(f"Type '{token}' to continue", default="", console=console)
        return answer.strip() == token

    def select(self, prompt: str, options: Sequence[str]) -> list[int]:
        if self.preset.selection:
            return self.preset.select(prompt, options)
        table = Table(title=prompt, show_header=False)
        for number, option in enumerate(options, start=1):
            table.add_row(str(number), option)
        console.print(table)
        raw = Prompt.ask("Enter numbers separated by spaces, 'a' for all, 'n' for none",
                         default="n", console=console)
        indices, invalid = parse_selection(raw, len(options))
        for token in invalid:
            console.print(f"[yellow]\u26a0\ufe0f  Ignoring invalid selection '{token}'[/yellow]")
        return indices
