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

"""Detect, plan, execute and verify: one intent end to end."""

from __future__ import annotations

from rich.panel import Panel

from node_manager import console, logger
from node_manager.context import ManagerContext
from node_manager.detector import NodeInspection, detect_node_state, inspect_node, refine_with_api
from node_manager.errors import NodeManagerError
from node_manager.models import ActionIntent, NodeState, Outcome, PlanReport, Readiness
from node_manager.planner import build_plan


def inspect(ctx: ManagerContext) -> NodeInspection:
    """Inspect the node and probe the API server when a kubeconfig is readable."""
    inspection = refine_with_api(inspect_node(ctx.settings.cluster), ctx.kube.api_reachable)
    logger.info("Detected node state: %s%s", inspection.state.value,
                " (indeterminate)" if inspection.indeterminate else "")
    return inspection


def verify_state(ctx: ManagerContext, target: NodeState) -> None:
    """Re-detect the node after a mutating plan and compare with the plan's target.

    Raises:
        NodeManagerError: If the node did not end up in the target state, or a
            present cluster has no Ready node.
    """
    state = detect_node_state(ctx.settings.cluster, ctx.kube.api_reachable)
    if state is not target:
        raise NodeManagerError(f"Expected node state '{target.value}' after the plan, found '{state.value}'")
    if target is NodeState.CLUSTER_PRESENT and ctx.kube.node_readiness() is not Readiness.READY:
        raise NodeManagerError("The cluster is up but its node is not Ready")
    console.print(f"[green]\u2705 Node state verified: {state.value}[/green]")


def print_summary(report: PlanReport) -> None:
    counts = {outcome: 0 for outcome in Outcome}
    for result in report.results:
        counts[result.outcome] += 1
    console.print(
        f"[bold]{report.executed} step(s):[/bold] {counts[Outcome.SUCCESS]} done, "
        f"{counts[Outcome.ALREADY_SATISFIED]} already satisfied, {counts[Outcome.FATAL_FAILURE]} failed, "
        f"{len(report.warnings)} warning(s)"
    )


def run_intent(ctx: ManagerContext, intent: ActionIntent) -> PlanReport:
    """Run one intent against the node.

    Args:
        ctx: Manager context.
        intent: Requested operation.

    Returns:
        Report of the executed plan; empty when there was nothing to do.

    Raises:
        PreconditionError: If a precondition fails before any step.
        UserAborted: If the operator declines a gate.
        FatalFailure: If a critical step fails.
        NodeManagerError: If the node is not in the expected state afterwards.
    """
    inspection = inspect(ctx)
    plan = build_plan(inspection, intent, ctx)
    if not plan.steps:
        console.print("[yellow]\u2139\ufe0f  Nothing to do[/yellow]")
        return PlanReport()

    logger.info("Executing %d step(s) for '%s'", len(plan.steps), intent.kind.value)
    report = ctx.executor.execute(plan)

    if plan.mutating and plan.target is not None:
        console.print(Panel.fit("Verifying node state", style="bold blue"))
        verify_state(ctx, plan.target)
    if plan.mutating:
        print_summary(report)
    return report
