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

"""Exception hierarchy shared by the planner, executor and CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from node_manager.models import PlanReport, StepResult


class NodeManagerError(RuntimeError):
    """Base class for every error raised by node_manager."""


class PreconditionError(NodeManagerError):
    """A required tool, file, permission or cluster condition is missing.

    Raised before any step of a plan runs.
    """


class ConfigError(PreconditionError):
    """The configuration file or environment holds an invalid value."""


class UserAborted(NodeManagerError):
    """The operator declined a confirmation gate or interrupted the run."""


class TransientFailure(NodeManagerError):
    """A retryable failure (network, timing) raised outside the executor."""


class KubeQueryError(NodeManagerError):
    """A kubectl query failed for a reason other than connectivity."""


class FatalFailure(NodeManagerError):
    """A mandatory step failed after its retries.

    Attributes:
        step: Name of the step that failed.
        result: Last captured result of the step.
        report: Report of the plan up to and including the failed step.
    """

    def __init__(self, step: str, result: StepResult, report: PlanReport | None = None) -> None:
        detail = (result.stderr or result.stdout).strip()
        message = f"Step '{step}' failed after {result.attempts} attempt(s) (exit code {result.exit_code})"
        if detail:
            message = f"{message}: {detail.splitlines()[-1]}"
        super().__init__(message)
        self.step = step
        self.result = result
        self.report = report
