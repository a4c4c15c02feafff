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

"""Configuration classes and config file loading."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import yaml
from pydantic import AliasChoices, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from node_manager.constants import (
    DEFAULT_API_READY_TIMEOUT,
    DEFAULT_CADDY_NAMESPACE,
    DEFAULT_CALICO_WAIT_TIMEOUT,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CRI_SOCKET,
    DEFAULT_DASHBOARD_TOKEN_DURATION,
    DEFAULT_DASHBOARD_TOKEN_FILE,
    DEFAULT_DASHBOARD_WAIT_TIMEOUT,
    DEFAULT_DEPLOYMENT_WAIT_TIMEOUT,
    DEFAULT_HOST_DATA_BASE_DIR,
    DEFAULT_INIT_LOG_FILE,
    DEFAULT_KUBEADM_INIT_TIMEOUT,
    DEFAULT_KUBEADM_RESET_TIMEOUT,
    DEFAULT_KUBECONFIG,
    DEFAULT_KUBELET_DIR,
    DEFAULT_MANIFESTS_DIR,
    DEFAULT_NODE_READY_TIMEOUT,
    DEFAULT_NODE_REGISTER_TIMEOUT,
    DEFAULT_PACKAGE_INSTALL_TIMEOUT,
    DEFAULT_PGID,
    DEFAULT_POD_NETWORK_CIDR,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PUID,
    DEFAULT_STATE_DIRS,
    DEFAULT_TIMEZONE,
    DEFAULT_USER_KUBE_DIR,
    VERSION_PATTERN,
    dep_value,
)
from node_manager.errors import ConfigError


# ============================================================================
# Configuration classes
# ============================================================================

class ClusterConfig(BaseSettings):
    """Node and control-plane configuration, auto-loaded from NODE_MANAGER_* env vars.

    Attributes:
        k8s_version: Kubernetes version installed and passed to ``kubeadm init``.
        pod_network_cidr: Pod network CIDR handed to kubeadm and Calico.
        calico_version: Calico release tag.
        containerd_version: containerd.io package version prefix.
        kubeconfig: Admin kubeconfig written by kubeadm; every kubectl call uses it.
        manifests_dir: Static pod manifest directory written by kubeadm.
        user_kube_dir: Directory that receives a copy of the admin kubeconfig.
        state_dirs: Directories removed entirely on reset.
        kubelet_dir: Directory whose contents are removed on reset.
        cri_socket: containerd socket kubeadm talks to.
        init_log_file: File receiving the output of ``kubeadm init``.
    """

    model_config = SettingsConfigDict(env_prefix="NODE_MANAGER_", extra="ignore")

    k8s_version: str = Field(default=dep_value("kubernetes", "version", default="1.29.0"),
                             pattern=VERSION_PATTERN)
    pod_network_cidr: str = Field(default=DEFAULT_POD_NETWORK_CIDR,
                                  pattern=r"^\d{1,3}(\.\d{1,3}){3}/\d{1,2}$")
    calico_version: str = Field(default=dep_value("calico", "version", default="v3.27.2"),
                                pattern=VERSION_PATTERN)
    containerd_version: str = Field(default=dep_value("containerd", "version", default="1.7"),
                                    pattern=r"^[0-9]+\.[0-9]+(\.[0-9]+)?$")
    kubeconfig: Path = DEFAULT_KUBECONFIG
    manifests_dir: Path = DEFAULT_MANIFESTS_DIR
    user_kube_dir: Path = DEFAULT_USER_KUBE_DIR
    state_dirs: list[Path] = Field(default_factory=lambda: list(DEFAULT_STATE_DIRS))
    kubelet_dir: Path = DEFAULT_KUBELET_DIR
    cri_socket: Path = DEFAULT_CRI_SOCKET
    init_log_file: Path = DEFAULT_INIT_LOG_FILE

    @property
    def k8s_semver(self) -> str:
        """Kubernetes version without a leading ``v``."""
        return self.k8s_version.lstrip("v")

    @property
    def k8s_minor(self) -> str:
        """Kubernetes ``major.minor`` used by the package repository URL."""
        major, minor = self.k8s_semver.split(".")[:2]
        return f"{major}.{minor}"


class AddonConfig(BaseSettings):
    """Optional cluster extras, auto-loaded from NODE_MANAGER_* env vars.

    Attributes:
        install_dashboard: Whether to install the Kubernetes Dashboard.
        dashboard_version: Dashboard release tag.
        dashboard_service_type: Service type the dashboard is exposed with.
        dashboard_token_duration: Lifetime of the generated access token, in seconds.
        dashboard_token_file: Where the access token is written (mode 0600).
        install_caddy: Whether to deploy the Caddy example service.
        caddy_namespace: Namespace of the Caddy example.
        caddy_image: Caddy container image.
        install_local_path: Whether to install the local path provisioner.
        local_path_version: Local path provisioner release tag.
        local_path_default_class: Whether to mark ``local-path`` as the default StorageClass.
    """

    model_config = SettingsConfigDict(env_prefix="NODE_MANAGER_", extra="ignore")

    install_dashboard: bool = True
    dashboard_version: str = Field(default=dep_value("dashboard", "version", default="v2.7.0"),
                                   pattern=VERSION_PATTERN)
    dashboard_service_type: Literal["NodePort", "ClusterIP"] = "NodePort"
    dashboard_token_duration: int = Field(default=DEFAULT_DASHBOARD_TOKEN_DURATION, ge=600)
    dashboard_token_file: Path = DEFAULT_DASHBOARD_TOKEN_FILE
    install_caddy: bool = True
    caddy_namespace: str = Field(default=DEFAULT_CADDY_NAMESPACE, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    caddy_image: str = dep_value("caddy", "image", default="caddy:latest")
    install_local_path: bool = False
    local_path_version: str = Field(default=dep_value("local_path_provisioner", "version", default="v0.0.24"),
                                    pattern=VERSION_PATTERN)
    local_path_default_class: bool = False


class AppsConfig(BaseSettings):
    """Application hosting configuration.

    The unprefixed ``PUID`` and ``PGID`` variables are honoured as well.

    Attributes:
        host_data_base_dir: Root of the per-application host data directories.
        puid: Owner uid of host data and the container user.
        pgid: Owner gid of host data and the container group.
        timezone: ``TZ`` passed to application containers.
    """

    model_config = SettingsConfigDict(env_prefix="NODE_MANAGER_", extra="ignore")

    host_data_base_dir: Path = DEFAULT_HOST_DATA_BASE_DIR
    puid: int = Field(default=DEFAULT_PUID, ge=0,
                      validation_alias=AliasChoices("puid", "NODE_MANAGER_PUID", "PUID"))
    pgid: int = Field(default=DEFAULT_PGID, ge=0,
                      validation_alias=AliasChoices("pgid", "NODE_MANAGER_PGID", "PGID"))
    timezone: str = DEFAULT_TIMEZONE


class TimeoutConfig(BaseSettings):
    """Timeouts in seconds, auto-loaded from NODE_MANAGER_TIMEOUT_* env vars."""

    model_config = SettingsConfigDict(env_prefix="NODE_MANAGER_TIMEOUT_", extra="ignore")

    command: int = Field(default=DEFAULT_COMMAND_TIMEOUT, ge=1)
    kubeadm_init: int = Field(default=DEFAULT_KUBEADM_INIT_TIMEOUT, ge=60)
    kubeadm_reset: int = Field(default=DEFAULT_KUBEADM_RESET_TIMEOUT, ge=30)
    package_install: int = Field(default=DEFAULT_PACKAGE_INSTALL_TIMEOUT, ge=60)
    node_register: int = Field(default=DEFAULT_NODE_REGISTER_TIMEOUT, ge=1)
    node_ready: int = Field(default=DEFAULT_NODE_READY_TIMEOUT, ge=1)
    api_ready: int = Field(default=DEFAULT_API_READY_TIMEOUT, ge=1)
    calico_wait: int = Field(default=DEFAULT_CALICO_WAIT_TIMEOUT, ge=1)
    dashboard_wait: int = Field(default=DEFAULT_DASHBOARD_WAIT_TIMEOUT, ge=1)
    deployment_wait: int = Field(default=DEFAULT_DEPLOYMENT_WAIT_TIMEOUT, ge=1)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0, le=60)


# ============================================================================
# Aggregate settings
# ============================================================================

@dataclass(frozen=True)
class Settings:
    """Everything loaded at startup, passed explicitly to every component."""

    cluster: ClusterConfig
    addons: AddonConfig
    apps: AppsConfig
    timeouts: TimeoutConfig


_SECTIONS: dict[str, type[BaseSettings]] = {
    "cluster": ClusterConfig,
    "addons": AddonConfig,
    "apps": AppsConfig,
    "timeouts": TimeoutConfig,
}


def _read_config_file(config_file: Path) -> dict:
    """Read and shape-check a YAML config file.

    Args:
        config_file: Path of the YAML file.

    Returns:
        Mapping of section name to its key/value overrides.

    Raises:
        ConfigError: If the file is missing, unparsable, or has unknown sections or keys.
    """
    try:
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}
    except OSError as err:
        raise ConfigError(f"Cannot read config file {config_file}: {err.strerror}") from err
    except yaml.YAMLError as err:
        raise ConfigError(f"Config file {config_file} is not valid YAML: {err}") from err

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping of sections")
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ConfigError(f"Unknown config section(s) in {config_file}: {', '.join(unknown)}")
    for section, values in data.items():
        if values is None:
            data[section] = {}
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")
        fields = set(_SECTIONS[section].model_fields)
        bad_keys = sorted(set(values) - fields)
        if bad_keys:
            raise ConfigError(f"Unknown key(s) in config section '{section}': {', '.join(bad_keys)}")
    return data


def load_settings(config_file: Path | None = None) -> Settings:
    """Build the settings for one invocation.

    Precedence, lowest first: built-in defaults, dependencies.yaml, NODE_MANAGER_*
    environment variables, then the config file.

    Args:
        config_file: Optional YAML file with ``cluster``, ``addons``, ``apps``
            and ``timeouts`` sections.

    Returns:
        Validated settings.

    Raises:
        ConfigError: If any value fails validation.
    """
    overrides = _read_config_file(config_file) if config_file else {}
    built: dict[str, BaseSettings] = {}
    for section, model in _SECTIONS.items():
        try:
            built[section] = model(**overrides.get(section, {}))
        except ValidationError as err:
            problems = "; ".join(
                f"{section}.{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in err.errors()
            )
            raise ConfigError(f"Invalid configuration: {problems}") from err
    return Settings(**built)
