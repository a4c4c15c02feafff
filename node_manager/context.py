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

"""Explicit per-invocation context handed to every component."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from node_manager.config import Settings
from node_manager.confirm import Confirmer
from node_manager.executor import StepExecutor
from node_manager.kube import KubeClient
from node_manager.models import IntentKind
from node_manager.preflight import require_for_intent
from node_manager.utils import Runner, run_command


@dataclass
class ManagerContext:
    """Settings plus the collaborators a plan is built and run with.

    Attributes:
        settings: Loaded configuration.
        kube: kubectl client bound to the configured kubeconfig.
        executor: Step executor.
        confirmer: Confirmation port.
        preflight: Host check run by the planner before any step.
    """

    settings: Settings
    kube: KubeClient
    executor: StepExecutor
    confirmer: Confirmer
    preflight: Callable[[IntentKind], None] = require_for_intent

    @classmethod
    def create(
        cls,
        settings: Settings,
        confirmer: Confirmer,
        runner: Runner = run_command,
        sleep: Callable[[float], None] = time.sleep,
        preflight: Callable[[IntentKind], None] = require_for_intent,
    ) -> ManagerContext:
        executor = StepExecutor(runner=runner, sleep=sleep, default_timeout=settings.timeouts.command)
        kube = KubeClient(settings.cluster.kubeconfig, runner=runner)
        return cls(settings=settings, kube=kube, executor=executor, confirmer=confirmer, preflight=preflight)

    def check(self, argv: Sequence[str]) -> bool:
        """Run a read-only check command and return whether it exited 0."""
        return self.executor.runner(list(argv), timeout=self.settings.timeouts.command).ok

    def output(self, argv: Sequence[str]) -> str:
        """Run a read-only command and return its stripped stdout, or "" on failure."""
        result = self.executor.runner(list(argv), timeout=self.settings.timeouts.command)
        return result.stdout.strip() if result.ok else ""

    def kubectl(self, *args: str) -> list[str]:
        return self.kube.command(*args)
