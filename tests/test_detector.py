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

from pathlib import Path

import pytest

from node_manager import detector
from node_manager.apps import CATALOGUE
from node_manager.detector import detect_managed_apps, detect_node_state, inspect_node
from node_manager.models import NodeState


def _deny_stat(monkeypatch: pytest.MonkeyPatch, *denied: Path) -> None:
    real_stat = Path.stat

    def stat(self, *args, **kwargs):
        if self in denied:
            raise PermissionError(13, "Permission denied", str(self))
        return real_stat(self, *args, **kwargs)

    monkeypatch.setattr(Path, "stat", stat)


def test_nothing_present_is_uninitialized(settings):
    assert detect_node_state(settings.cluster) is NodeState.UNINITIALIZED


def test_no_network_call_without_probe(settings, fake):
    fake.bootstrap()
    assert detect_node_state(settings.cluster) is NodeState.CLUSTER_PRESENT
    assert fake.calls == []


def test_manifest_dir_alone_means_cluster_present(settings):
    settings.cluster.manifests_dir.mkdir(parents=True)
    assert detect_node_state(settings.cluster) is NodeState.CLUSTER_PRESENT


def test_unreadable_kubeconfig_is_cluster_present(settings, monkeypatch):
    settings.cluster.kubeconfig.parent.mkdir(parents=True)
    settings.cluster.kubeconfig.write_text("secret")
    monkeypatch.setattr(detector, "_readable", lambda path: False)

    probe_calls = []
    state = detect_node_state(settings.cluster, api_probe=lambda: probe_calls.append(1) or False)

    assert state is NodeState.CLUSTER_PRESENT
    assert probe_calls == []


def test_both_checks_denied_fail_closed(settings, monkeypatch):
    _deny_stat(monkeypatch, settings.cluster.kubeconfig, settings.cluster.manifests_dir)

    inspection = inspect_node(settings.cluster)

    assert inspection.state is NodeState.UNINITIALIZED
    assert inspection.indeterminate
    assert inspection.effective_state is NodeState.CLUSTER_PRESENT
    assert inspection.kubeconfig.error == "Permission denied"


def test_one_check_denied_other_present_is_not_indeterminate(settings, monkeypatch):
    settings.cluster.manifests_dir.mkdir(parents=True)
    _deny_stat(monkeypatch, settings.cluster.kubeconfig)

    inspection = inspect_node(settings.cluster)

    assert inspection.state is NodeState.CLUSTER_PRESENT
    assert not inspection.indeterminate


def test_silent_api_is_partially_configured(settings, fake):
    fake.bootstrap()
    fake.active.discard("kubelet")

    state = detect_node_state(settings.cluster, api_probe=lambda: False)

    assert state is NodeState.PARTIALLY_CONFIGURED


def test_raising_probe_counts_as_unreachable(settings, fake):
    fake.bootstrap()

    def probe() -> bool:
        raise OSError("kubectl vanished")

    assert detect_node_state(settings.cluster, api_probe=probe) is NodeState.PARTIALLY_CONFIGURED


def test_reachable_api_keeps_cluster_present(settings, fake, make_context):
    fake.bootstrap()
    ctx = make_context()
    assert detect_node_state(settings.cluster, api_probe=ctx.kube.api_reachable) is NodeState.CLUSTER_PRESENT


# ============================================================================
# Managed applications
# ============================================================================

def test_detect_managed_apps_flags_unlabelled_namespaces(fake, make_context):
    fake.bootstrap()
    fake.namespaces["gitea"] = {"managed-by": "selfhost-deploy-script"}
    fake.namespaces["jellyfin"] = {}
    ctx = make_context()

    detected = detect_managed_apps(ctx.kube, CATALOGUE.values())

    assert [(d.app.slug, d.verified) for d in detected] == [("gitea", True), ("jellyfin", False)]


def test_detect_managed_apps_is_read_only(fake, make_context):
    fake.bootstrap()
    fake.namespaces["gitea"] = {"managed-by": "selfhost-deploy-script"}
    ctx = make_context()

    detect_managed_apps(ctx.kube, CATALOGUE.values())

    assert fake.mutations == []
