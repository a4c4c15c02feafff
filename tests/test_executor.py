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

from __future__ import annotations

import pytest

from node_manager.errors import FatalFailure, NodeManagerError
from node_manager.executor import StepExecutor, classify_result
from node_manager.models import (
    ActionIntent,
    CommandResult,
    IntentKind,
    Outcome,
    Plan,
    Readiness,
    RetryPolicy,
    StepResult,
)

REFUSED = CommandResult(argv=("kubectl",), exit_code=1,
                        stderr="The connection to the server 10.0.0.5:6443 was refused")
OK = CommandResult(argv=("kubectl",), exit_code=0, stdout="done")


class ScriptedRunner:
    """Returns queued results in order, repeating the last one."""

    def __init__(self, *results: CommandResult) -> None:
        self.results = list(results)
        self.calls: list[list[str]] = []

    def __call__(self, argv, timeout=None, input_text=None, log_file=None) -> CommandResult:
        self.calls.append(list(argv))
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


@pytest.fixture
def sleeps() -> list[float]:
    return []


def _executor(runner, sleeps: list[float]) -> StepExecutor:
    return StepExecutor(runner=runner, sleep=sleeps.append)


# ============================================================================
# Classification
# ============================================================================

KUBEADM_PREFLIGHT_ABORT = CommandResult(
    argv=("kubeadm", "init"),
    exit_code=1,
    stderr=(
        "[preflight] Running pre-flight checks\n"
        "error execution phase preflight: [preflight] Some fatal errors occurred:\n"
        "\t[ERROR FileAvailable--etc-kubernetes-manifests-kube-apiserver.yaml]: "
        "/etc/kubernetes/manifests/kube-apiserver.yaml already exists\n"
    ),
)


@pytest.mark.parametrize(
    ("result", "idempotent_create", "expected"),
    [
        (CommandResult(argv=(), exit_code=0), False, Outcome.SUCCESS),
        (CommandResult(argv=(), exit_code=1, stderr='namespaces "gitea" already exists'), True,
         Outcome.ALREADY_SATISFIED),
        (CommandResult(argv=(), exit_code=1, stderr="Error from server (AlreadyExists): x"), True,
         Outcome.ALREADY_SATISFIED),
        (CommandResult(argv=(), exit_code=1, stderr='namespaces "gitea" already exists'), False,
         Outcome.FATAL_FAILURE),
        (KUBEADM_PREFLIGHT_ABORT, False, Outcome.FATAL_FAILURE),
        (REFUSED, False, Outcome.TRANSIENT_FAILURE),
        (CommandResult(argv=(), exit_code=100, stderr="E: Could not get lock /var/lib/dpkg/lock-frontend"), False,
         Outcome.TRANSIENT_FAILURE),
        (CommandResult(argv=(), exit_code=-1, timed_out=True), False, Outcome.TRANSIENT_FAILURE),
        (CommandResult(argv=(), exit_code=1, stderr="error: unknown flag: --bogus"), True, Outcome.FATAL_FAILURE),
    ],
)
def test_classify_result(result, idempotent_create, expected):
    assert classify_result(result, idempotent_create) is expected


# ============================================================================
# run_step
# ============================================================================

@pytest.mark.parametrize("attempts", [1, 3, 5])
def test_transient_failures_exhaust_exactly_max_attempts(attempts, sleeps):
    runner = ScriptedRunner(REFUSED)
    result = _executor(runner, sleeps).run_step(["kubectl", "get", "nodes"],
                                                retry_policy=RetryPolicy(max_attempts=attempts, delay=3))

    assert len(runner.calls) == attempts
    assert result.attempts == attempts
    assert result.outcome is Outcome.FATAL_FAILURE
    assert sleeps == [3] * (attempts - 1)


def test_transient_failure_then_success(sleeps):
    runner = ScriptedRunner(REFUSED, OK)
    result = _executor(runner, sleeps).run_step(["kubectl", "apply", "-f", "x"],
                                                retry_policy=RetryPolicy(max_attempts=4))

    assert result.outcome is Outcome.SUCCESS
    assert result.attempts == 2
    assert result.stdout == "done"


def test_fatal_failure_is_not_retried(sleeps):
    runner = ScriptedRunner(CommandResult(argv=(), exit_code=2, stderr="invalid argument"))
    result = _executor(runner, sleeps).run_step(["kubeadm", "init"], retry_policy=RetryPolicy(max_attempts=5))

    assert len(runner.calls) == 1
    assert result.outcome is Outcome.FATAL_FAILURE
    assert sleeps == []


def test_exponential_backoff(sleeps):
    runner = ScriptedRunner(REFUSED)
    policy = RetryPolicy(max_attempts=4, backoff="exponential", delay=1, max_delay=3)
    _executor(runner, sleeps).run_step(["apt-get", "update"], retry_policy=policy)

    assert sleeps == [1, 2, 3]


def test_timeout_is_passed_per_invocation(sleeps):
    seen = []

    def runner(argv, timeout=None, input_text=None, log_file=None):
        seen.append(timeout)
        return OK

    _executor(runner, sleeps).run_step(["true"], timeout=42)
    StepExecutor(runner=runner, default_timeout=7).run_step(["true"])
    assert seen == [42, 7]


def test_retry_policy_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


# ============================================================================
# wait_for
# ============================================================================

def _probe(*states: Readiness):
    queue = list(states)
    calls = []

    def probe() -> Readiness:
        calls.append(1)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    return probe, calls


def test_wait_for_times_out_when_never_ready(sleeps):
    probe, calls = _probe(Readiness.NOT_READY)
    result = _executor(ScriptedRunner(OK), sleeps).wait_for(probe, timeout=10, interval=5, name="node")

    assert result.outcome is Outcome.FATAL_FAILURE
    assert "not ready after 10s" in result.stderr
    assert len(calls) == 3
    assert sleeps == [5, 5]


def test_wait_for_succeeds_once_ready(sleeps):
    probe, calls = _probe(Readiness.NOT_READY, Readiness.UNREACHABLE, Readiness.READY)
    result = _executor(ScriptedRunner(OK), sleeps).wait_for(probe, timeout=60, interval=5)

    assert result.outcome is Outcome.SUCCESS
    assert result.attempts == 3


def test_wait_for_unreachable_budget_ends_early(sleeps):
    probe, calls = _probe(Readiness.UNREACHABLE)
    result = _executor(ScriptedRunner(OK), sleeps).wait_for(
        probe, timeout=300, interval=5, retry_policy=RetryPolicy(max_attempts=2))

    assert result.outcome is Outcome.FATAL_FAILURE
    assert len(calls) == 2
    assert "unreachable on 2 polls" in result.stderr


class FakeClock:
    """Monotonic clock advanced by sleeps and by slow probes."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def test_wait_for_stops_at_wall_clock_deadline_with_slow_probes():
    clock = FakeClock()
    calls = []

    def slow_probe() -> Readiness:
        calls.append(clock.now)
        clock.now += 0.3
        return Readiness.NOT_READY

    ex = StepExecutor(runner=ScriptedRunner(OK), sleep=clock.sleep, clock=clock)
    result = ex.wait_for(slow_probe, timeout=0.5, interval=0.1, name="node")

    assert result.outcome is Outcome.FATAL_FAILURE
    assert calls == pytest.approx([0.0, 0.4])
    assert clock.now == pytest.approx(0.7)


def test_wait_for_never_sleeps_past_the_deadline():
    clock = FakeClock()
    sleeps = []

    def probe() -> Readiness:
        clock.now += 2
        return Readiness.NOT_READY

    def sleep(seconds: float) -> None:
        sleeps.append(seconds)
        clock.sleep(seconds)

    ex = StepExecutor(runner=ScriptedRunner(OK), sleep=sleep, clock=clock)
    result = ex.wait_for(probe, timeout=10, interval=4)

    assert result.outcome is Outcome.FATAL_FAILURE
    assert sleeps == pytest.approx([4, 2])
    assert clock.now == pytest.approx(12)


def test_wait_for_not_ready_does_not_consume_unreachable_budget(sleeps):
    probe, calls = _probe(Readiness.NOT_READY, Readiness.NOT_READY, Readiness.NOT_READY, Readiness.READY)
    result = _executor(ScriptedRunner(OK), sleeps).wait_for(
        probe, timeout=60, interval=1, retry_policy=RetryPolicy(max_attempts=1))

    assert result.outcome is Outcome.SUCCESS
    assert len(calls) == 4


# ============================================================================
# execute
# ============================================================================

def _plan(executor: StepExecutor, *steps) -> Plan:
    return Plan(intent=ActionIntent(IntentKind.MODIFY), steps=list(steps))


def test_critical_failure_halts_the_plan(sleeps):
    runner = ScriptedRunner(OK, CommandResult(argv=(), exit_code=1, stderr="boom\nlast line"), OK)
    ex = _executor(runner, sleeps)
    plan = _plan(
        ex,
        ex.command("first", ["a"], phase="p"),
        ex.command("second", ["b"], phase="p"),
        ex.command("third", ["c"], phase="p"),
    )

    with pytest.raises(FatalFailure) as excinfo:
        ex.execute(plan)

    assert excinfo.value.step == "second"
    assert "last line" in str(excinfo.value)
    assert excinfo.value.report.aborted_at == "second"
    assert excinfo.value.report.executed == 2
    assert [call[0] for call in runner.calls] == ["a", "b"]


def test_optional_failure_is_a_warning(sleeps):
    runner = ScriptedRunner(CommandResult(argv=(), exit_code=1, stderr="patch failed"), OK)
    ex = _executor(runner, sleeps)
    plan = _plan(
        ex,
        ex.command("optional", ["a"], phase="p", critical=False),
        ex.command("next", ["b"], phase="p"),
    )

    report = ex.execute(plan)

    assert report.executed == 2
    assert report.aborted_at is None
    assert len(report.warnings) == 1
    assert "patch failed" in report.warnings[0]
    assert report.results[1].outcome is Outcome.SUCCESS


def test_satisfied_step_is_skipped(sleeps):
    runner = ScriptedRunner(OK)
    ex = _executor(runner, sleeps)
    plan = _plan(ex, ex.command("start kubelet", ["systemctl", "start", "kubelet"], phase="p",
                                satisfied=lambda: True))

    report = ex.execute(plan)

    assert runner.calls == []
    assert report.results == [StepResult.skipped("start kubelet")]


def test_failing_satisfied_check_runs_the_step(sleeps):
    def broken() -> bool:
        raise NodeManagerError("query failed")

    runner = ScriptedRunner(OK)
    ex = _executor(runner, sleeps)
    ex.execute(_plan(ex, ex.command("apply", ["kubectl", "apply"], phase="p", satisfied=broken)))

    assert len(runner.calls) == 1


def test_local_step_errors_are_fatal(sleeps):
    def explode() -> str:
        raise NodeManagerError("kubeconfig missing")

    ex = _executor(ScriptedRunner(OK), sleeps)
    with pytest.raises(FatalFailure, match="kubeconfig missing"):
        ex.execute(_plan(ex, ex.local("verify", explode, phase="p")))


def test_already_exists_on_plain_step_halts_the_plan(sleeps):
    runner = ScriptedRunner(KUBEADM_PREFLIGHT_ABORT, OK)
    ex = _executor(runner, sleeps)
    plan = _plan(
        ex,
        ex.command("kubeadm init", ["kubeadm", "init"], phase="p"),
        ex.command("next", ["b"], phase="p"),
    )

    with pytest.raises(FatalFailure) as excinfo:
        ex.execute(plan)

    assert excinfo.value.step == "kubeadm init"
    assert excinfo.value.report.results[0].outcome is Outcome.FATAL_FAILURE
    assert len(runner.calls) == 1


def test_already_exists_on_idempotent_create_continues(sleeps):
    runner = ScriptedRunner(CommandResult(argv=(), exit_code=1, stderr='namespaces "gitea" already exists'), OK)
    ex = _executor(runner, sleeps)
    plan = _plan(
        ex,
        ex.command("create namespace", ["kubectl", "create", "namespace", "gitea"], phase="p",
                   idempotent_create=True),
        ex.command("next", ["b"], phase="p"),
    )

    report = ex.execute(plan)

    assert [result.outcome for result in report.results] == [Outcome.ALREADY_SATISFIED, Outcome.SUCCESS]
