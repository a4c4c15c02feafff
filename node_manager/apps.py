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

"""Self-hosted application catalogue and the generic deploy and removal routines."""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType

from node_manager import console, manifests
from node_manager.components import apply_manifest_step, report_service_access
from node_manager.context import ManagerContext
from node_manager.models import AppDefinition, DetectedApp, PortSpec, Step, VolumeSpec

# ============================================================================
# Catalogue
# ============================================================================

_APPS = (
    AppDefinition(
        slug="portainer",
        display_name="Portainer",
        namespace="portainer",
        image="portainer/portainer-ce:latest",
        ports=(PortSpec("https-ui", 9443, "https"), PortSpec("http-edge", 8000)),
        volumes=(VolumeSpec("portainer-data-pvc", "data", "2Gi"),),
        notes=("Create the admin user within five minutes of the first start.",),
    ),
    AppDefinition(
        slug="nextcloud",
        display_name="Nextcloud (SQLite)",
        namespace="nextcloud",
        image="nextcloud:latest",
        ports=(PortSpec("http", 80),),
        volumes=(VolumeSpec("nextcloud-data-pvc", "data", "10Gi", "/var/www/html"),),
        env=(("SQLITE_DATABASE", "nextcloud.db"),),
        run_as_user=True,
        notes=("Complete the setup wizard in the browser; SQLite suits a single user.",),
    ),
    AppDefinition(
        slug="gitea",
        display_name="Gitea (SQLite)",
        namespace="gitea",
        image="gitea/gitea:latest",
        ports=(PortSpec("http", 3000), PortSpec("ssh", 22, "ssh")),
        volumes=(VolumeSpec("gitea-data-pvc", "data", "5Gi"),),
        env=(("USER_UID", "1000"), ("USER_GID", "1000"), ("GITEA__database__DB_TYPE", "sqlite3")),
        notes=("Choose SQLite3 in the installer and keep the default paths.",),
    ),
    AppDefinition(
        slug="vaultwarden",
        display_name="Vaultwarden (Bitwarden Server)",
        namespace="vaultwarden",
        image="vaultwarden/server:latest",
        ports=(PortSpec("http", 80),),
        volumes=(VolumeSpec("vw-data-pvc", "data", "1Gi"),),
        env=(("WEBSOCKET_ENABLED", "true"),),
        run_as_user=True,
        notes=("Bitwarden clients require HTTPS; put a TLS reverse proxy in front.",),
    ),
    AppDefinition(
        slug="uptime-kuma",
        display_name="Uptime Kuma (Monitoring)",
        namespace="uptime-kuma",
        image="louislam/uptime-kuma:latest",
        ports=(PortSpec("http", 3001),),
        volumes=(VolumeSpec("uk-data-pvc", "data", "1Gi", "/app/data"),),
        run_as_user=True,
    ),
    AppDefinition(
        slug="jellyfin",
        display_name="Jellyfin (Media Server)",
        namespace="jellyfin",
        image="jellyfin/jellyfin:latest",
        ports=(PortSpec("http", 8096),),
        volumes=(
            VolumeSpec("jf-config-pvc", "config", "2Gi", "/config"),
            VolumeSpec("jf-media-pvc", "media", "1Gi", "/media"),
        ),
        notes=("Copy media into the host 'media' directory to make it visible in Jellyfin.",),
    ),
    AppDefinition(
        slug="home-assistant",
        display_name="Home Assistant",
        namespace="home-assistant",
        image="ghcr.io/home-assistant/home-assistant:stable",
        ports=(PortSpec("http", 8123),),
        volumes=(VolumeSpec("ha-config-pvc", "config", "5Gi", "/config"),),
        wait_timeout=480,
        notes=("Device discovery needs host networking, which this deployment does not use.",),
    ),
    AppDefinition(
        slug="filebrowser",
        display_name="File Browser",
        namespace="filebrowser",
        image="filebrowser/filebrowser:latest",
        ports=(PortSpec("http", 80),),
        volumes=(
            VolumeSpec("fb-config-pvc", "config", "1Gi", "/database"),
            VolumeSpec("fb-data-pvc", "files", "10Gi", "/srv"),
        ),
        args=("--database=/database/filebrowser.db", "--root=/srv"),
        notes=("Default login is admin/admin; change it immediately.",),
    ),
)

CATALOGUE: MappingProxyType[str, AppDefinition] = MappingProxyType({app.slug: app for app in _APPS})


def resolve_apps(names: frozenset[str] | set[str]) -> tuple[list[AppDefinition], list[str]]:
    """Split requested names into known catalogue entries and unknown names.

    Returns:
        Tuple of (known apps in catalogue order, sorted unknown names).
    """
    known = [app for slug, app in CATALOGUE.items() if slug in names]
    unknown = sorted(set(names) - set(CATALOGUE))
    return known, unknown


def host_dir(ctx: ManagerContext, app: AppDefinition, volume: VolumeSpec | None = None) -> Path:
    base = ctx.settings.apps.host_data_base_dir / app.namespace
    return base / volume.suffix if volume else base


# ============================================================================
# Install
# ============================================================================

def _report_access(ctx: ManagerContext, app: AppDefinition) -> str:
    scheme = app.ports[0].scheme if app.ports else "http"
    urls = report_service_access(ctx, app.namespace, app.service, app.display_name, scheme)
    for volume in app.volumes:
        console.print(f"[yellow]   Data for {volume.mount_path}: {host_dir(ctx, app, volume)}[/yellow]")
    for note in app.notes:
        console.print(f"[yellow]\u2139\ufe0f  {note}[/yellow]")
    return urls


def install_app_steps(ctx: ManagerContext, app: AppDefinition) -> list[Step]:
    """Namespace, host directories, volumes, workload, readiness and access report for one app."""
    apps_cfg = ctx.settings.apps
    timeouts = ctx.settings.timeouts
    ex = ctx.executor
    phase = f"Installing {app.display_name}"

    steps = [apply_manifest_step(ctx, f"Create namespace {app.namespace}", [manifests.namespace(app.namespace)],
                                 phase)]
    for volume in app.volumes:
        path = str(host_dir(ctx, app, volume))
        steps += [
            ex.command(f"Create host directory {path}", ["mkdir", "-p", path], phase=phase),
            ex.command(f"Set owner of {path}", ["chown", f"{apps_cfg.puid}:{apps_cfg.pgid}", path],
                       phase=phase, critical=False),
            ex.command(f"Set mode of {path}", ["chmod", "755", path], phase=phase, critical=False),
        ]
    volumes = []
    for volume in app.volumes:
        volumes += [manifests.host_path_volume(app, volume, host_dir(ctx, app, volume)),
                    manifests.volume_claim(app, volume)]
    steps += [
        apply_manifest_step(ctx, f"Create volumes for {app.slug}", volumes, phase),
        apply_manifest_step(
            ctx,
            f"Deploy {app.slug}",
            [manifests.deployment(app, apps_cfg.puid, apps_cfg.pgid, apps_cfg.timezone),
             manifests.node_port_service(app)],
            phase,
        ),
        ex.waiting(f"Wait for {app.deployment}",
                   lambda: ctx.kube.deployment_readiness(app.namespace, app.deployment),
                   phase=phase, critical=False,
                   timeout=app.wait_timeout or timeouts.deployment_wait, interval=timeouts.poll_interval),
        ex.local(f"Report {app.slug} access", lambda: _report_access(ctx, app), phase=phase,
                 critical=False, mutating=False),
    ]
    return steps


# ============================================================================
# Uninstall
# ============================================================================

def uninstall_app_steps(ctx: ManagerContext, detected: DetectedApp, delete_host_data: bool) -> list[Step]:
    """Namespace and volume removal for one app, plus host data when approved.

    Args:
        ctx: Manager context.
        detected: Application found on the cluster.
        delete_host_data: Whether the host data directory is removed too.

    Returns:
        Ordered removal steps.
    """
    app = detected.app
    ex = ctx.executor
    phase = f"Removing {app.display_name}"
    steps = [
        ex.command(f"Delete namespace {app.namespace}",
                   ctx.kubectl("delete", "namespace", app.namespace, "--ignore-not-found=true", "--wait=false"),
                   phase=phase),
        ex.command(f"Delete volumes of {app.slug}",
                   ctx.kubectl("delete", "pv", *app.pv_names, "--ignore-not-found=true", "--wait=false"),
                   phase=phase, critical=False),
    ]
    data_dir = host_dir(ctx, app)
    if delete_host_data:
        steps.append(ex.command(f"Delete host data {data_dir}", ["rm", "-rf", str(data_dir)], phase=phase,
                                critical=False))
    else:
        steps.append(ex.local(f"Keep host data {data_dir}",
                              lambda: console.print(f"[yellow]\u2139\ufe0f  Host data kept in {data_dir}[/yellow]"),
                              phase=phase, critical=False, mutating=False))
    return steps
