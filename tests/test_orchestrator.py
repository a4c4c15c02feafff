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

from node_manager.confirm import Gate, PresetConfirmer
from node_manager.detector import detect_node_state
from node_manager.errors import FatalFailure, NodeManagerError, UserAborted
from node_manager.models import ActionIntent, CommandResult, IntentKind, NodeState, Outcome
from node_manager.orchestrator import run_intent, verify_state


def test_fresh_init_reaches_a_ready_cluster(fake, make_context, settings):
    ctx = make_context()

    report = run_intent(ctx, ActionIntent(IntentKind.INIT))

    assert report.aborted_at is None
    assert detect_node_state(settings.cluster, ctx.kube.api_reachable) is NodeState.CLUSTER_PRESENT
    assert not fake.tainted
    assert fake.dashboard_type == "NodePort"
    assert settings.addons.dashboard_token_file.read_text() == "fake-token\n"
    assert oct(settings.addons.dashboard_token_file.stat().st_mode & 0o777) == "0o600"
    assert ("example-caddy", "caddy-deployment") in fake.deployments
    assert not any(argv[:2] == ("kubeadm", "reset") for argv in fake.calls)


def test_init_kubeadm_call_uses_configured_values(fake, make_context, settings):
    run_intent(make_context(), ActionIntent(IntentKind.INIT))

    init = next(argv for argv in fake.calls if argv[:2] == ("kubeadm", "init"))
    assert f"--pod-network-cidr={settings.cluster.pod_network_cidr}" in init
    assert f"--kubernetes-version={settings.cluster.k8s_semver}" in init


def test_modify_is_idempotent(fake, make_context):
    fake.bootstrap()
    ctx = make_context()

    run_intent(ctx, ActionIntent(IntentKind.MODIFY))
    fake.calls.clear()
    report = run_intent(ctx, ActionIntent(IntentKind.MODIFY))

    assert fake.mutations
    assert all(argv[3] == "apply" for argv in fake.mutations)
    assert report.warnings == []
    skipped = {result.name for result in report.results if result.outcome is Outcome.ALREADY_SATISFIED}
    assert {"Start kubelet", "Allow workloads on the control plane", "Write Dashboard access token"} <= skipped


def test_modify_starts_stopped_services(fake, make_context):
    fake.bootstrap()
    fake.active.clear()

    run_intent(make_context(), ActionIntent(IntentKind.MODIFY))

    assert {"containerd", "kubelet"} <= fake.active


def test_destroy_without_token_changes_nothing(fake, make_context, settings):
    fake.bootstrap()

    with pytest.raises(UserAborted):
        run_intent(make_context(), ActionIntent(IntentKind.DESTROY))

    assert fake.mutations == []
    assert settings.cluster.kubeconfig.exists()


def test_destroy_returns_node_to_uninitialized(fake, make_context, settings):
    fake.bootstrap()
    ctx = make_context(PresetConfirmer(tokens={Gate.DESTROY: "destroy"}))

    run_intent(ctx, ActionIntent(IntentKind.DESTROY))

    assert not settings.cluster.kubeconfig.exists()
    assert not settings.cluster.manifests_dir.exists()
    assert detect_node_state(settings.cluster) is NodeState.UNINITIALIZED
    assert "kubelet" not in fake.active


def test_reset_and_init_rebuilds_the_cluster(fake, make_context, settings):
    fake.bootstrap()
    ctx = make_context(PresetConfirmer(tokens={Gate.RESET: "reset"}))

    run_intent(ctx, ActionIntent(IntentKind.RESET_AND_INIT))

    commands = [argv[:2] for argv in fake.calls if argv[0] == "kubeadm"]
    assert commands.index(("kubeadm", "reset")) < commands.index(("kubeadm", "init"))
    assert settings.cluster.kubeconfig.exists()


def test_critical_failure_stops_the_run(fake, make_context):
    fake.override("kubeadm", "init",
                  result=CommandResult(argv=(), exit_code=1, stderr="[ERROR Port-6443]: Port 6443 is in use"))

    with pytest.raises(FatalFailure) as excinfo:
        run_intent(make_context(), ActionIntent(IntentKind.INIT))

    assert excinfo.value.step == "kubeadm init"
    assert "Port 6443 is in use" in str(excinfo.value)
    assert not any(argv[0] == "kubectl" and "apply" in argv for argv in fake.calls)


def test_optional_failure_does_not_stop_the_run(fake, make_context, settings):
    fake.bootstrap()
    fake.override("kubectl", "--kubeconfig", str(settings.cluster.kubeconfig), "taint",
                  result=CommandResult(argv=(), exit_code=1, stderr="error: node not found"))

    report = run_intent(make_context(), ActionIntent(IntentKind.MODIFY))

    assert report.aborted_at is None
    assert any("Allow workloads" in warning for warning in report.warnings)


def test_status_is_read_only(fake, make_context):
    fake.bootstrap()
    fake.namespaces["gitea"] = {"managed-by": "selfhost-deploy-script"}

    report = run_intent(make_context(), ActionIntent(IntentKind.STATUS))

    assert fake.mutations == []
    assert report.results[0].outcome is Outcome.SUCCESS


def test_status_with_api_down_still_succeeds(fake, make_context):
    fake.bootstrap()
    fake.active.discard("kubelet")

    report = run_intent(make_context(), ActionIntent(IntentKind.STATUS))

    assert report.results[0].ok
    assert fake.mutations == []


def test_empty_plan_is_nothing_to_do(fake, make_context):
    fake.bootstrap()
    report = run_intent(make_context(), ActionIntent(IntentKind.UNINSTALL_APPS, frozenset({"gitea"})))
    assert report.results == []


def test_verify_state_detects_unready_node(fake, make_context):
    fake.bootstrap()
    fake.node_ready = False

    with pytest.raises(NodeManagerError, match="not Ready"):
        verify_state(make_context(), NodeState.CLUSTER_PRESENT)


def test_verify_state_detects_wrong_state(fake, make_context):
    fake.bootstrap()
    with pytest.raises(NodeManagerError, match="uninitialized"):
        verify_state(make_context(), NodeState.UNINITIALIZED)
