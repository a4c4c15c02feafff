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

"""Kubernetes manifests built as dicts and rendered with PyYAML."""

from __future__ import annotations

from pathlib import Path

import yaml

from node_manager.constants import (
    DASHBOARD_ADMIN_USER,
    DASHBOARD_VIEWER_ROLE,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    NS_DASHBOARD,
)
from node_manager.models import AppDefinition, VolumeSpec


def render(*documents: dict) -> str:
    """Render manifests as one multi-document YAML stream for ``kubectl apply -f -``."""
    return yaml.safe_dump_all(documents, sort_keys=False)


def managed_labels(app: str | None = None) -> dict[str, str]:
    labels = {MANAGED_BY_LABEL: MANAGED_BY_VALUE}
    if app:
        labels = {"app": app, **labels}
    return labels


def namespace(name: str, labels: dict[str, str] | None = None) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": name, "labels": labels if labels is not None else managed_labels()},
    }


# ============================================================================
# Application resources
# ============================================================================

def host_path_volume(app: AppDefinition, volume: VolumeSpec, host_dir: Path) -> dict:
    """PersistentVolume backed by a host directory, kept when released."""
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolume",
        "metadata": {
            "name": app.pv_name(volume),
            "labels": {
                "app.kubernetes.io/name": app.slug,
                "app.kubernetes.io/instance": app.pv_name(volume),
                MANAGED_BY_LABEL: MANAGED_BY_VALUE,
            },
        },
        "spec": {
            "capacity": {"storage": volume.size},
            "accessModes": ["ReadWriteOnce"],
            "persistentVolumeReclaimPolicy": "Retain",
            "storageClassName": "",
            "hostPath": {"path": str(host_dir), "type": "DirectoryOrCreate"},
        },
    }


def volume_claim(app: AppDefinition, volume: VolumeSpec) -> dict:
    """PersistentVolumeClaim bound explicitly to the application's volume."""
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {"name": volume.claim, "namespace": app.namespace, "labels": managed_labels(app.slug)},
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "storageClassName": "",
            "volumeName": app.pv_name(volume),
            "resources": {"requests": {"storage": volume.size}},
        },
    }


def deployment(app: AppDefinition, puid: int, pgid: int, timezone: str) -> dict:
    """Single-replica Deployment; runs as ``puid:pgid`` when the app opts into ``run_as_user``."""
    env = [
        {"name": "PUID", "value": str(puid)},
        {"name": "PGID", "value": str(pgid)},
        {"name": "TZ", "value": timezone},
    ]
    env += [{"name": key, "value": value} for key, value in app.env]
    container = {
        "name": app.slug,
        "image": app.image,
        "ports": [{"name": port.name, "containerPort": port.port} for port in app.ports],
        "env": env,
        "volumeMounts": [
            {"name": volume.suffix, "mountPath": volume.mount_path} for volume in app.volumes
        ],
    }
    if app.args:
        container["args"] = list(app.args)
    pod = {
        "containers": [container],
        "volumes": [
            {"name": volume.suffix, "persistentVolumeClaim": {"claimName": volume.claim}} for volume in app.volumes
        ],
    }
    if app.run_as_user:
        pod["securityContext"] = {"runAsUser": puid, "runAsGroup": pgid, "fsGroup": pgid}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": app.deployment, "namespace": app.namespace, "labels": managed_labels(app.slug)},
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": {"app": app.slug}},
            "template": {
                "metadata": {"labels": {"app": app.slug}},
                "spec": pod,
            },
        },
    }


def node_port_service(app: AppDefinition) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": app.service, "namespace": app.namespace, "labels": managed_labels(app.slug)},
        "spec": {
            "type": "NodePort",
            "selector": {"app": app.slug},
            "ports": [
                {"name": port.name, "port": port.port, "targetPort": port.port, "protocol": "TCP"}
                for port in app.ports
            ],
        },
    }


# ============================================================================
# Cluster extras
# ============================================================================

def dashboard_rbac() -> list[dict]:
    """Service account bound to a read-only dashboard role."""
    return [
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": DASHBOARD_ADMIN_USER, "namespace": NS_DASHBOARD},
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRole",
            "metadata": {"name": DASHBOARD_VIEWER_ROLE, "labels": managed_labels()},
            "rules": [
                {"apiGroups": ["", "apps", "batch", "networking.k8s.io", "storage.k8s.io"],
                 "resources": ["*"],
                 "verbs": ["get", "list", "watch"]},
            ],
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": f"{DASHBOARD_ADMIN_USER}-{DASHBOARD_VIEWER_ROLE}", "labels": managed_labels()},
            "roleRef": {"apiGroup": "rbac.authorization.k8s.io", "kind": "ClusterRole", "name": DASHBOARD_VIEWER_ROLE},
            "subjects": [{"kind": "ServiceAccount", "name": DASHBOARD_ADMIN_USER, "namespace": NS_DASHBOARD}],
        },
    ]


def caddy(namespace_name: str, image: str, deployment_name: str, service_name: str) -> list[dict]:
    """Namespace, Deployment and NodePort Service of the Caddy example."""
    labels = managed_labels("caddy")
    return [
        namespace(namespace_name),
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": deployment_name, "namespace": namespace_name, "labels": labels},
            "spec": {
                "replicas": 1,
                "selector": {"matchLabels": {"app": "caddy"}},
                "template": {
                    "metadata": {"labels": {"app": "caddy"}},
                    "spec": {"containers": [
                        {"name": "caddy", "image": image, "ports": [{"containerPort": 80}]},
                    ]},
                },
            },
        },
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": service_name, "namespace": namespace_name, "labels": labels},
            "spec": {
                "type": "NodePort",
                "selector": {"app": "caddy"},
                "ports": [{"name": "http", "port": 80, "targetPort": 80, "protocol": "TCP"}],
            },
        },
    ]
