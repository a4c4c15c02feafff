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

"""Node state detection and managed application discovery.

Both functions are read-only. Node state detection never raises: every
failure resolves to a NodeState.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from node_manager import console, logger
from node_manager.config import ClusterConfig
from node_manager.kube import KubeClient
from node_manager.models import AppDefinition, DetectedApp, NodeState


@dataclass(frozen=True)
class PathCheck:
    """Existence check of one well-known path.

    Attributes:
        path: Checked path.
        exists: Whether the path exists.
        readable: Whether the current user can read it.
        error: Error text when the existence itself could not be determined.
    """

    path: Path
    exists: bool
    readable: bool = False
    error: str | None = None


@dataclass(frozen=True)
class NodeInspection:
    """Raw checks behind a NodeState."""

    kubeconfig: PathCheck
    manifests: PathCheck
    state: NodeState

    @property
    def indeterminate(self) -> bool:
        """True when a check errored and nothing else proved a cluster exists."""
        errored = self.kubeconfig.error is not None or self.manifests.error is not None
        return errored and not (self.kubeconfig.exists or self.manifests.exists)

    @property
    def effective_state(self) -> NodeState:
        """The state the planner acts on; indeterminate checks count as a cluster."""
        if self.indeterminate:
            return NodeState.CLUSTER_PRESENT
        return self.state

    @property
    def has_kubeconfig(self) -> bool:
        return self.kubeconfig.exists or self.kubeconfig.error is not None


def _readable(path: Path) -> bool:
    return os.access(path, os.R_OK)


def _check_path(path: Path) -> PathCheck:
    try:
        path.stat()
    except (FileNotFoundError, NotADirectoryError):
        return PathCheck(path=path, exists=False)
    except OSError as exc:
        return PathCheck(path=path, exists=False, error=exc.strerror or str(exc))
    return PathCheck(path=path, exists=True, readable=_readable(path))


def inspect_node(cluster_cfg: ClusterConfig) -> NodeInspection:
    """Check the kubeconfig path and the manifest directory.

    Args:
        cluster_cfg: Cluster configuration holding both paths.

    Returns:
        The raw checks and the derived state. When both checks fail on
        permissions the state is ``UNINITIALIZED`` and the inspection is
        flagged indeterminate.
    """
    kubeconfig = _check_path(cluster_cfg.kubeconfig)
    manifests = _check_path(cluster_cfg.manifests_dir)
    if kubeconfig.exists or manifests.exists:
        state = NodeState.CLUSTER_PRESENT
    else:
        state = NodeState.UNINITIALIZED
    return NodeInspection(kubeconfig=kubeconfig, manifests=manifests, state=state)


def detect_node_state(
    cluster_cfg: ClusterConfig,
    api_probe: Callable[[], bool] | None = None,
) -> NodeState:
    """Classify the node.

    No network call is made unless ``api_probe`` is given; then a readable
    kubeconfig whose API does not answer yields ``PARTIALLY_CONFIGURED``.

    Args:
        cluster_cfg: Cluster configuration holding the well-known paths.
        api_probe: Optional callable returning whether the API server answers.

    Returns:
        The detected NodeState.
    """
    return refine_with_api(inspect_node(cluster_cfg), api_probe).state


def refine_with_api(inspection: NodeInspection, api_probe: Callable[[], bool] | None) -> NodeInspection:
    """Downgrade a present cluster to ``PARTIALLY_CONFIGURED`` when its API is silent.

    Args:
        inspection: Filesystem inspection.
        api_probe: Callable returning whether the API server answers, or None.

    Returns:
        The inspection, with its state adjusted.
    """
    if api_probe is None or not inspection.kubeconfig.exists or not inspection.kubeconfig.readable:
        return inspection
    try:
        reachable = api_probe()
    except Exception as exc:  # any probe failure means "not reachable"
        logger.debug("API probe raised: %s", exc)
        reachable = False
    if reachable:
        return inspection
    return NodeInspection(kubeconfig=inspection.kubeconfig, manifests=inspection.manifests,
                          state=NodeState.PARTIALLY_CONFIGURED)


def detect_managed_apps(kube: KubeClient, catalogue: Iterable[AppDefinition]) -> list[DetectedApp]:
    """Find catalogue applications whose namespace exists.

    Namespaces without the managed-by label are still reported, flagged as
    unverified, and a warning is printed.

    Args:
        kube: Client used for the namespace queries.
        catalogue: Application definitions to look for.

    Returns:
        Detected applications in catalogue order.

    Raises:
        TransientFailure: If the API server cannot be reached.
        KubeQueryError: If a namespace query fails otherwise.
    """
    detected: list[DetectedApp] = []
    for app in catalogue:
        namespace = kube.namespace(app.namespace)
        if namespace is None:
            continue
        if not namespace.managed:
            console.print(
                f"[yellow]\u26a0\ufe0f  Namespace '{app.namespace}' exists but is not labelled as managed "
                f"by this tool; ownership of {app.display_name} is unverified[/yellow]"
            )
        detected.append(DetectedApp(app=app, verified=namespace.managed))
    logger.info("Detected %d managed application(s)", len(detected))
    return detected
