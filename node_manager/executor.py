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

"""Step execution: result classification, retries, readiness polling and plan runs."""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from rich.panel import Panel
from tenacity import Retrying, retry_if_result, stop_after_attempt, stop_any

from node_manager import console, logger
from node_manager.constants import (
    ALREADY_SATISFIED_MARKERS,
    DEFAULT_COMMAND_TIMEOUT,
    TRANSIENT_MARKERS,
    WAIT_UNREACHABLE_BUDGET,
)
from node_manager.errors import FatalFailure, NodeManagerError
from node_manager.models import (
    CommandResult,
    Outcome,
    Plan,
    PlanReport,
    Readiness,
    RetryPolicy,
    Step,
    StepResult,
)
from node_manager.utils import Runner, run_command

_OUTCOME_STYLE = {
    Outcome.SUCCESS: "[green]\u2705 {name}[/green]",
    Outcome.ALREADY_SATISFIED: "[green]\u2705 {name} (already satisfied)[/green]",
    Outcome.TRANSIENT_FAILURE: "[yellow]\u26a0\ufe0f  {name} (transient failure)[/yellow]",
    Outcome.FATAL_FAILURE: "[red]\u274c {name}[/red]",
}


def is_transient_output(text: str) -> bool:
    """Return whether command output looks like a connection-level failure."""
    lowered = text.lower()
    return any(marker in lowered for marker in TRANSIENT_MARKERS)


def classify_result(result: CommandResult, idempotent_create: bool = False) -> Outcome:
    """Classify one command invocation.

    Args:
        result: Captured command result.
        idempotent_create: Whether "already exists" output means the step's
            effect is in place. Only create/apply style steps set this.

    Returns:
        ``TRANSIENT_FAILURE`` for timeouts and connection errors,
        ``SUCCESS`` for exit code 0, ``ALREADY_SATISFIED`` when an idempotent
        create reports the object already exists, ``FATAL_FAILURE`` otherwise.
    """
    if result.timed_out:
        return Outcome.TRANSIENT_FAILURE
    if result.exit_code == 0:
        return Outcome.SUCCESS
    output = f"{result.stderr}\n{result.stdout}".lower()
    if idempotent_create and any(marker in output for marker in ALREADY_SATISFIED_MARKERS):
        return Outcome.ALREADY_SATISFIED
    if is_transient_output(output):
        return Outcome.TRANSIENT_FAILURE
    return Outcome.FATAL_FAILURE


class StepExecutor:
    """Runs steps strictly one after another and classifies their results.

    The runner, sleep and clock are injectable so plans can be executed
    against fakes in tests.
    """

    def __init__(
        self,
        runner: Runner = run_command,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        default_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.runner = runner
        self._sleep = sleep
        self._clock = clock
        self.default_timeout = default_timeout

    # ========================================================================
    # Single steps
    # ========================================================================

    def run_step(
        self,
        command: Sequence[str],
        timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
        *,
        name: str | None = None,
        input_text: str | None = None,
        log_file: Path | None = None,
        idempotent_create: bool = False,
    ) -> StepResult:
        """Run one external command, retrying transient failures.

        Args:
            command: Command and arguments.
            timeout: Wall-clock seconds allowed per invocation.
            retry_policy: Attempt budget and backoff; defaults to a single attempt.
            name: Step name used in logs; defaults to the command line.
            input_text: Text piped to the command's stdin.
            log_file: File that also receives the command output.
            idempotent_create: Treat "already exists" output as already satisfied.

        Returns:
            The classified result of the last invocation. Transient failures
            that exhaust the attempt budget are reported as ``FATAL_FAILURE``.
        """
        policy = retry_policy or RetryPolicy()
        label = name or " ".join(command)
        per_attempt = timeout or self.default_timeout
        attempts = 0
        started = self._clock()

        def _attempt() -> tuple[CommandResult, Outcome]:
            nonlocal attempts
            attempts += 1
            result = self.runner(list(command), timeout=per_attempt, input_text=input_text, log_file=log_file)
            outcome = classify_result(result, idempotent_create)
            if outcome is Outcome.TRANSIENT_FAILURE:
                logger.warning("%s: transient failure on attempt %d/%d", label, attempts, policy.max_attempts)
            return result, outcome

        retrying = Retrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=policy.wait(),
            retry=retry_if_result(lambda pair: pair[1] is Outcome.TRANSIENT_FAILURE),
            retry_error_callback=lambda state: state.outcome.result(),
            sleep=self._sleep,
        )
        result, outcome = retrying(_attempt)
        if outcome is Outcome.TRANSIENT_FAILURE:
            logger.error("%s: giving up after %d attempts", label, attempts)
            outcome = Outcome.FATAL_FAILURE

        return StepResult(
            name=label,
            outcome=outcome,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            elapsed=self._clock() - started,
            attempts=attempts,
        )

    def wait_for(
        self,
        probe: Callable[[], Readiness],
        timeout: float,
        interval: float,
        retry_policy: RetryPolicy | None = None,
        *,
        name: str = "wait",
    ) -> StepResult:
        """Poll a readiness probe at a fixed interval.

        Polling stops once ``timeout`` wall-clock seconds have passed since the
        first poll, however long each probe takes. The last sleep is shortened
        so it never runs past the deadline.

        Args:
            probe: Callable reporting the current readiness.
            timeout: Wall-clock seconds after which a persistent ``NOT_READY`` is fatal.
            interval: Seconds between polls.
            retry_policy: ``max_attempts`` is the budget of ``UNREACHABLE`` polls
                tolerated before giving up early.
            name: Step name used in logs.

        Returns:
            ``SUCCESS`` once the probe reports ``READY``; ``FATAL_FAILURE`` on
            timeout or when the unreachable budget is spent.
        """
        budget = retry_policy.max_attempts if retry_policy else WAIT_UNREACHABLE_BUDGET
        max_polls = max(1, math.floor(timeout / interval) + 1)
        counts = {"polls": 0, "unreachable": 0}
        started = self._clock()

        def _poll() -> Readiness:
            counts["polls"] += 1
            state = probe()
            if state is Readiness.UNREACHABLE:
                counts["unreachable"] += 1
                logger.warning("%s: cluster unreachable (%d/%d)", name, counts["unreachable"], budget)
            else:
                logger.debug("%s: %s (poll %d/%d)", name, state.value, counts["polls"], max_polls)
            return state

        def _budget_spent(retry_state) -> bool:
            return counts["unreachable"] >= budget

        def _deadline_passed(retry_state) -> bool:
            return self._clock() - started >= timeout

        def _until_next_poll(retry_state) -> float:
            return max(0.0, min(interval, timeout - (self._clock() - started)))

        retrying = Retrying(
            stop=stop_any(stop_after_attempt(max_polls), _deadline_passed, _budget_spent),
            wait=_until_next_poll,
            retry=retry_if_result(lambda state: state is not Readiness.READY),
            retry_error_callback=lambda state: state.outcome.result(),
            sleep=self._sleep,
        )
        final = retrying(_poll)

        if final is Readiness.READY:
            return StepResult(name=name, outcome=Outcome.SUCCESS,
                              elapsed=self._clock() - started, attempts=counts["polls"])
        if counts["unreachable"] >= budget:
            reason = f"cluster unreachable on {counts['unreachable']} polls"
        else:
            reason = f"not ready after {timeout:g}s"
        return StepResult(name=name, outcome=Outcome.FATAL_FAILURE, exit_code=1, stderr=reason,
                          elapsed=self._clock() - started, attempts=counts["polls"])

    def run_local(self, name: str, fn: Callable[[], str | None]) -> StepResult:
        """Run an in-process action and classify it.

        Args:
            name: Step name.
            fn: Callable returning optional output text; raising
                NodeManagerError or OSError marks the step as failed.

        Returns:
            ``SUCCESS`` with the returned text, or ``FATAL_FAILURE`` with the error.
        """
        started = self._clock()
        try:
            output = fn() or ""
        except (NodeManagerError, OSError) as exc:
            return StepResult(name=name, outcome=Outcome.FATAL_FAILURE, exit_code=1, stderr=str(exc),
                              elapsed=self._clock() - started)
        return StepResult(name=name, outcome=Outcome.SUCCESS, stdout=output, elapsed=self._clock() - started)

    # ========================================================================
    # Step factories
    # ========================================================================

    def command(
        self,
        name: str,
        argv: Sequence[str],
        *,
        phase: str,
        critical: bool = True,
        mutating: bool = True,
        timeout: float | None = None,
        retry: RetryPolicy | None = None,
        satisfied: Callable[[], bool] | None = None,
        input_text: str | None = None,
        log_file: Path | None = None,
        idempotent_create: bool = False,
    ) -> Step:
        """Build a step that runs one external command."""
        def _action() -> StepResult:
            return self.run_step(argv, timeout, retry, name=name, input_text=input_text, log_file=log_file,
                                 idempotent_create=idempotent_create)

        return Step(name=name, phase=phase, action=_action, critical=critical,
                    mutating=mutating, satisfied=satisfied)

    def waiting(
        self,
        name: str,
        probe: Callable[[], Readiness],
        *,
        phase: str,
        timeout: float,
        interval: float,
        critical: bool = True,
        retry: RetryPolicy | None = None,
    ) -> Step:
        """Build a read-only step that waits for a readiness probe."""
        def _action() -> StepResult:
            return self.wait_for(probe, timeout, interval, retry, name=name)

        return Step(name=name, phase=phase, action=_action, critical=critical, mutating=False)

    def local(
        self,
        name: str,
        fn: Callable[[], str | None],
        *,
        phase: str,
        critical: bool = True,
        mutating: bool = True,
        satisfied: Callable[[], bool] | None = None,
    ) -> Step:
        """Build a step that runs an in-process action."""
        return Step(name=name, phase=phase, action=lambda: self.run_local(name, fn), critical=critical,
                    mutating=mutating, satisfied=satisfied)

    # ========================================================================
    # Plans
    # ========================================================================

    @staticmethod
    def _already_satisfied(step: Step) -> bool:
        if step.satisfied is None:
            return False
        try:
            return step.satisfied()
        except NodeManagerError as exc:
            logger.debug("%s: satisfied check failed, running the step: %s", step.name, exc)
            return False

    def execute(self, plan: Plan) -> PlanReport:
        """Execute a plan strictly in order.

        Args:
            plan: Ordered steps to run.

        Returns:
            Report of every executed step and the warnings raised by optional ones.

        Raises:
            FatalFailure: When a critical step fails. Nothing is rolled back.
        """
        report = PlanReport()
        total = len(plan.steps)
        phase = None
        for index, step in enumerate(plan.steps, start=1):
            if step.phase != phase:
                phase = step.phase
                console.print(Panel.fit(phase, style="bold blue"))

            if self._already_satisfied(step):
                result = StepResult.skipped(step.name)
            else:
                result = step.action()
            report.results.append(result)
            logger.info("[%d/%d] %s: %s (attempts=%d, %.1fs)",
                        index, total, step.name, result.outcome.value, result.attempts, result.elapsed)
            console.print(_OUTCOME_STYLE[result.outcome].format(name=step.name))

            if result.outcome is not Outcome.FATAL_FAILURE:
                continue
            if step.critical:
                report.aborted_at = step.name
                raise FatalFailure(step.name, result, report)
            warning = f"Optional step '{step.name}' failed: {(result.stderr or result.stdout).strip()}"
            report.warnings.append(warning)
            console.print(f"[yellow]\u26a0\ufe0f  {warning}[/yellow]")
        return report
