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

"""Node states, intents, step results, plans and application records."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

from tenacity import wait_exponential, wait_fixed
from tenacity.wait import wait_base


# ============================================================================
# Node state and intents
# ============================================================================

class NodeState(str, Enum):
    """Classification of the node's Kubernetes configuration."""

    UNINITIALIZED = "uninitialized"
    CLUSTER_PRESENT = "cluster-present"
    PARTIALLY_CONFIGURED = "partially-configured"


class IntentKind(str, Enum):
    """Operations an invocation can request."""

    INIT = "init"
    RESET_AND_INIT = "reset-and-init"
    MODIFY = "modify"
    START = "start"
    STOP = "stop"
    DESTROY = "destroy"
    STATUS = "status"
    INSTALL_APPS = "install-apps"
    UNINSTALL_APPS = "uninstall-apps"


@dataclass(frozen=True)
class ActionIntent:
    """The operation requested for one invocation.

    Attributes:
        kind: Requested operation.
        apps: Application names for app intents; empty means "ask".
    """

    kind: IntentKind
    apps: frozenset[str] = frozenset()

    @property
    def mutating(self) -> bool:
        return self.kind is not IntentKind.STATUS


# ============================================================================
# Execution results
# ============================================================================

class Outcome(str, Enum):
    """Classification of one step invocation."""

    SUCCESS = "success"
    ALREADY_SATISFIED = "already-satisfied"
    TRANSIENT_FAILURE = "transient-failure"
    FATAL_FAILURE = "fatal-failure"


class Readiness(str, Enum):
    """Answer of a readiness probe."""

    READY = "ready"
    NOT_READY = "not-ready"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class CommandResult:
    """Raw result of one external process."""

    argv: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass(frozen=True)
class StepResult:
    """Classified outcome of a step, after retries.

    Attributes:
        name: Step name.
        outcome: Final classification.
        exit_code: Exit code of the last invocation (0 for local steps).
        stdout: Captured stdout of the last invocation.
        stderr: Captured stderr of the last invocation.
        elapsed: Wall-clock seconds spent across all attempts.
        attempts: Number of invocations (or polls) made.
    """

    name: str
    outcome: Outcome
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.SUCCESS, Outcome.ALREADY_SATISFIED)

    @classmethod
    def skipped(cls, name: str) -> StepResult:
        """Result recorded for a step whose effect is already in place."""
        return cls(name=name, outcome=Outcome.ALREADY_SATISFIED, attempts=0)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff between attempts.

    Attributes:
        max_attempts: Total number of invocations allowed, including the first.
        backoff: ``fixed`` waits ``delay`` seconds between attempts; ``exponential``
            doubles from ``delay`` up to ``max_delay``.
        delay: Base delay in seconds.
        max_delay: Upper bound for exponential backoff.
    """

    max_attempts: int = 1
    backoff: Literal["fixed", "exponential"] = "fixed"
    delay: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def wait(self) -> wait_base:
        """Build the tenacity wait strategy for this policy."""
        if self.backoff == "exponential":
            return wait_exponential(multiplier=self.delay, min=self.delay, max=self.max_delay)
        return wait_fixed(self.delay)


# ============================================================================
# Plans
# ============================================================================

@dataclass
class Step:
    """One unit of a plan.

    Attributes:
        name: Human readable step name, used in logs and errors.
        phase: Phase heading the step is printed under.
        action: Callable performing the step and classifying its result.
        critical: Whether a fatal result aborts the whole plan.
        mutating: Whether the step changes the node or the cluster.
        satisfied: Optional read-only check; when it returns True the action is skipped.
    """

    name: str
    phase: str
    action: Callable[[], StepResult]
    critical: bool = True
    mutating: bool = True
    satisfied: Callable[[], bool] | None = None


@dataclass
class Plan:
    """Ordered steps derived from a node state and an intent."""

    intent: ActionIntent
    steps: list[Step] = field(default_factory=list)
    target: NodeState | None = None

    def extend(self, steps: list[Step]) -> None:
        self.steps.extend(steps)

    @property
    def mutating(self) -> bool:
        return any(step.mutating for step in self.steps)


@dataclass
class PlanReport:
    """What happened while a plan executed."""

    results: list[StepResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    aborted_at: str | None = None

    @property
    def executed(self) -> int:
        return len(self.results)


# ============================================================================
# Application catalogue records
# ============================================================================

@dataclass(frozen=True)
class PortSpec:
    """A container port exposed through the application's NodePort service."""

    name: str
    port: int
    scheme: str = "http"


@dataclass(frozen=True)
class VolumeSpec:
    """A hostPath-backed persistent volume mounted into the application.

    Attributes:
        claim: PersistentVolumeClaim name.
        suffix: Sub-directory of the application's host data directory;
            also forms the PersistentVolume name ``<namespace>-<suffix>-pv``.
        size: Requested capacity.
        mount_path: Mount point inside the container.
    """

    claim: str
    suffix: str
    size: str
    mount_path: str = "/data"


@dataclass(frozen=True)
class AppDefinition:
    """Static catalogue entry describing one self-hosted application."""

    slug: str
    display_name: str
    namespace: str
    image: str
    ports: tuple[PortSpec, ...]
    volumes: tuple[VolumeSpec, ...]
    env: tuple[tuple[str, str], ...] = ()
    args: tuple[str, ...] = ()
    wait_timeout: int | None = None
    notes: tuple[str, ...] = ()
    # Pod-level runAsUser/runAsGroup/fsGroup taken from PUID/PGID.
    run_as_user: bool = False

    @property
    def deployment(self) -> str:
        return f"{self.slug}-deployment"

    @property
    def service(self) -> str:
        return f"{self.slug}-service"

    def pv_name(self, volume: VolumeSpec) -> str:
        return f"{self.namespace}-{volume.suffix}-pv"

    @property
    def pv_names(self) -> list[str]:
        return [self.pv_name(volume) for volume in self.volumes]


@dataclass(frozen=True)
class DetectedApp:
    """A catalogue application whose namespace exists on the cluster.

    Attributes:
        app: Catalogue entry.
        verified: Whether the namespace carries the managed-by label.
    """

    app: AppDefinition
    verified: bool
