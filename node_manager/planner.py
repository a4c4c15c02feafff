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

"""Turn a detected node state and a requested intent into an ordered plan.

Every precondition and confirmation gate is evaluated here, before the
executor sees a single step. A declined gate raises UserAborted, a missing
precondition raises PreconditionError; in both cases nothing has run.
"""

from __future__ import annotations

from node_manager import console, logger
from node_manager.apps import CATALOGUE, install_app_steps, resolve_apps, uninstall_app_steps
from node_manager.cluster import (
    PHASE_START,
    cluster_init_steps,
    configure_access_steps,
    reset_steps,
    start_service_step,
    start_steps,
    stop_steps,
    untaint_step,
    wait_api_step,
    wait_node_ready_step,
    wait_node_registered_step,
)
from node_manager.components import cni_steps, extras_steps
from node_manager.confirm import GATE_TOKENS, Gate
from node_manager.context import ManagerContext
from node_manager.detector import NodeInspection, detect_managed_apps
from node_manager.errors import KubeQueryError, PreconditionError, TransientFailure, UserAborted
from node_manager.host import install_runtime_steps, install_tools_steps, prepare_os_steps
from node_manager.models import ActionIntent, DetectedApp, IntentKind, NodeState, Plan, Step
from node_manager.monitor import render_status

PHASE_STATUS = "Cluster status"

EXISTING_CLUSTER_CHOICES = ("reset", "modify", "abort")

_CLUSTER_INTENTS = frozenset({IntentKind.MODIFY, IntentKind.START, IntentKind.STOP})
_APP_INTENTS = frozenset({IntentKind.INSTALL_APPS, IntentKind.UNINSTALL_APPS})


# ============================================================================
# Step sequences
# ============================================================================

def init_steps(ctx: ManagerContext) -> list[Step]:
    """Fresh node to a ready single-node cluster."""
    return [
        *prepare_os_steps(ctx),
        *install_runtime_steps(ctx),
        *install_tools_steps(ctx),
        *cluster_init_steps(ctx),
        *configure_access_steps(ctx),
        wait_node_registered_step(ctx),
        *cni_steps(ctx),
        wait_node_ready_step(ctx),
        untaint_step(ctx),
        *extras_steps(ctx),
    ]


def modify_steps(ctx: ManagerContext) -> list[Step]:
    """Bring an existing cluster up to date without re-initialising it."""
    return [
        start_service_step(ctx, "containerd", PHASE_START),
        start_service_step(ctx, "kubelet", PHASE_START),
        wait_api_step(ctx, PHASE_START),
        *cni_steps(ctx),
        wait_node_ready_step(ctx),
        untaint_step(ctx),
        *extras_steps(ctx),
    ]


def status_steps(ctx: ManagerContext) -> list[Step]:
    return [ctx.executor.local("Collect cluster status", lambda: render_status(ctx), phase=PHASE_STATUS,
                               mutating=False)]


# ============================================================================
# Gates
# ============================================================================

def _require_typed(ctx: ManagerContext, gate: Gate, prompt: str) -> None:
    token = GATE_TOKENS[gate]
    if not ctx.confirmer.confirm_typed(gate, prompt, token):
        raise UserAborted(f"'{gate.value}' was not confirmed (expected the token '{token}')")


def _reset_and_init(ctx: ManagerContext, intent: ActionIntent) -> Plan:
    _require_typed(
        ctx, Gate.RESET,
        "This wipes the existing cluster (kubeadm reset, etcd, CNI and kubelet state) and initialises a new one.",
    )
    return Plan(intent=intent, steps=[*reset_steps(ctx), *init_steps(ctx)], target=NodeState.CLUSTER_PRESENT)


def _plan_init(inspection: NodeInspection, intent: ActionIntent, ctx: ManagerContext) -> Plan:
    if inspection.effective_state is NodeState.UNINITIALIZED:
        return Plan(intent=intent, steps=init_steps(ctx), target=NodeState.CLUSTER_PRESENT)

    console.print(f"[yellow]\u26a0\ufe0f  Existing Kubernetes configuration found "
                  f"({_describe(inspection)})[/yellow]")
    choice = ctx.confirmer.choose(
        Gate.EXISTING_CLUSTER,
        "Reset and re-initialise, modify the existing cluster, or abort?",
        EXISTING_CLUSTER_CHOICES,
        default="abort",
    )
    logger.info("Existing cluster: operator chose '%s'", choice)
    if choice == "modify":
        return Plan(intent=intent, steps=modify_steps(ctx), target=NodeState.CLUSTER_PRESENT)
    if choice == "reset":
        return _reset_and_init(ctx, intent)
    raise UserAborted("Initialisation aborted: a cluster already exists on this node")


def _describe(inspection: NodeInspection) -> str:
    if inspection.indeterminate:
        return "detection was inconclusive, assuming a cluster is present"
    found = [str(check.path) for check in (inspection.kubeconfig, inspection.manifests) if check.exists]
    return ", ".join(found) or inspection.state.value


# ============================================================================
# Applications
# ============================================================================

def _require_api(inspection: NodeInspection) -> None:
    if inspection.state is not NodeState.CLUSTER_PRESENT or not inspection.kubeconfig.readable:
        raise PreconditionError(
            f"The Kubernetes API is not reachable (node state: {inspection.state.value}); "
            "start or initialise the cluster first"
        )


def _plan_install(intent: ActionIntent, ctx: ManagerContext) -> Plan:
    names = set(intent.apps)
    if not names:
        slugs = list(CATALOGUE)
        picked = ctx.confirmer.select(
            "Applications to install",
            [f"{CATALOGUE[slug].display_name} ({slug})" for slug in slugs],
        )
        names = {slugs[index] for index in picked}
    apps, unknown = resolve_apps(names)
    if unknown:
        raise PreconditionError(f"Unknown application(s): {', '.join(unknown)}")

    plan = Plan(intent=intent)
    for app in apps:
        plan.extend(install_app_steps(ctx, app))
    return plan


def _detect(ctx: ManagerContext) -> list[DetectedApp]:
    try:
        return detect_managed_apps(ctx.kube, CATALOGUE.values())
    except (TransientFailure, KubeQueryError) as exc:
        raise PreconditionError(f"Could not list installed applications: {exc}") from exc


def _plan_uninstall(intent: ActionIntent, ctx: ManagerContext) -> Plan:
    _, unknown = resolve_apps(set(intent.apps))
    if unknown:
        raise PreconditionError(f"Unknown application(s): {', '.join(unknown)}")

    detected = _detect(ctx)
    if not detected:
        console.print("[yellow]\u2139\ufe0f  No managed applications are installed[/yellow]")
        return Plan(intent=intent)
    if intent.apps:
        for name in sorted(intent.apps - {d.app.slug for d in detected}):
            console.print(f"[yellow]\u2139\ufe0f  {name} is not installed, skipping[/yellow]")
        selected = [d for d in detected if d.app.slug in intent.apps]
    else:
        picked = ctx.confirmer.select(
            "Applications to uninstall",
            [f"{d.app.display_name} ({d.app.slug}){'' if d.verified else ' [unverified]'}" for d in detected],
        )
        selected = [detected[index] for index in picked]

    plan = Plan(intent=intent)
    if not selected:
        return plan

    names = ", ".join(d.app.slug for d in selected)
    if not ctx.confirmer.confirm(
        Gate.DELETE_RESOURCES,
        f"Delete the namespaces and persistent volumes of: {names}?",
    ):
        raise UserAborted("Uninstall aborted: resource deletion was not confirmed")

    approved: list[DetectedApp] = []
    for item in selected:
        if item.verified:
            approved.append(item)
            continue
        console.print(f"[yellow]\u26a0\ufe0f  Namespace '{item.app.namespace}' is not labelled as managed by "
                      f"this tool; it may hold resources this tool did not create[/yellow]")
        if ctx.confirmer.confirm(Gate.DELETE_UNVERIFIED,
                                 f"Delete unverified namespace '{item.app.namespace}' anyway?"):
            approved.append(item)
        else:
            console.print(f"[yellow]\u2139\ufe0f  Keeping {item.app.slug}[/yellow]")
    if not approved:
        return plan

    delete_host_data = ctx.confirmer.confirm(
        Gate.DELETE_HOST_DATA,
        "Also delete the host data directories under "
        f"{ctx.settings.apps.host_data_base_dir}? This cannot be undone.",
    )
    for item in approved:
        plan.extend(uninstall_app_steps(ctx, item, delete_host_data))
    return plan


# ============================================================================
# Entry point
# ============================================================================

def build_plan(inspection: NodeInspection, intent: ActionIntent, ctx: ManagerContext) -> Plan:
    """Derive the plan for one intent against the inspected node.

    Args:
        inspection: Result of the state detector, already refined with an API probe.
        intent: Requested operation.
        ctx: Manager context; its confirmer answers the gates.

    Returns:
        The ordered plan. An empty plan means there is nothing to do.

    Raises:
        PreconditionError: If the host fails preflight, the cluster is missing
            for a cluster intent, or the API is unreachable for an app intent.
        UserAborted: If a confirmation gate is declined.
    """
    kind = intent.kind
    ctx.preflight(kind)
    state = inspection.effective_state
    logger.info("Planning '%s' for node state '%s'%s", kind.value, inspection.state.value,
                " (indeterminate)" if inspection.indeterminate else "")

    if kind is IntentKind.STATUS:
        return Plan(intent=intent, steps=status_steps(ctx))
    if kind is IntentKind.INIT:
        return _plan_init(inspection, intent, ctx)
    if kind is IntentKind.RESET_AND_INIT:
        if state is NodeState.UNINITIALIZED:
            return Plan(intent=intent, steps=init_steps(ctx), target=NodeState.CLUSTER_PRESENT)
        return _reset_and_init(ctx, intent)

    if kind is IntentKind.DESTROY:
        if state is NodeState.UNINITIALIZED:
            raise PreconditionError("No cluster found on this node; nothing to destroy")
        _require_typed(
            ctx, Gate.DESTROY,
            "This destroys the cluster on this node: kubeadm reset, cluster state removal, services stopped.",
        )
        return Plan(intent=intent, steps=reset_steps(ctx), target=NodeState.UNINITIALIZED)

    if kind in _CLUSTER_INTENTS:
        if not inspection.has_kubeconfig:
            raise PreconditionError(
                f"No kubeconfig at {inspection.kubeconfig.path}; '{kind.value}' needs an initialised cluster"
            )
        if kind is IntentKind.MODIFY:
            return Plan(intent=intent, steps=modify_steps(ctx), target=NodeState.CLUSTER_PRESENT)
        if kind is IntentKind.START:
            return Plan(intent=intent, steps=start_steps(ctx), target=NodeState.CLUSTER_PRESENT)
        return Plan(intent=intent, steps=stop_steps(ctx))

    if kind in _APP_INTENTS:
        _require_api(inspection)
        if kind is IntentKind.INSTALL_APPS:
            return _plan_install(intent, ctx)
        return _plan_uninstall(intent, ctx)

    raise PreconditionError(f"Unsupported intent: {kind.value}")
