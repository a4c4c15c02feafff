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

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def load_dependencies() -> dict:
    """Load component versions and images from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = Path(__file__).resolve().parent / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


VERSION_PATTERN = r"^v?[0-9]+\.[0-9]+\.[0-9]+([-.].*)?$"

# -- Ownership marker --
MANAGED_BY_LABEL = "managed-by"
MANAGED_BY_VALUE = "selfhost-deploy-script"

# -- Node paths --
DEFAULT_KUBECONFIG = Path("/etc/kubernetes/admin.conf")
DEFAULT_MANIFESTS_DIR = Path("/etc/kubernetes/manifests")
DEFAULT_USER_KUBE_DIR = Path("/root/.kube")
DEFAULT_STATE_DIRS = (Path("/var/lib/etcd"), Path("/var/lib/cni"))
DEFAULT_KUBELET_DIR = Path("/var/lib/kubelet")
DEFAULT_CRI_SOCKET = Path("/run/containerd/containerd.sock")
DEFAULT_INIT_LOG_FILE = Path("kubeadm-init.log")
DEFAULT_HOST_DATA_BASE_DIR = Path("/srv/k8s-apps-data")
DEFAULT_DASHBOARD_TOKEN_FILE = Path("/root/dashboard-token.txt")
OS_RELEASE_FILE = Path("/etc/os-release")

# -- Cluster defaults --
DEFAULT_POD_NETWORK_CIDR = "10.244.0.0/16"
DEFAULT_PUID = 1000
DEFAULT_PGID = 1000
DEFAULT_TIMEZONE = "Etc/UTC"

# -- Host preparation --
APT_PREREQUISITES = (
    "apt-transport-https",
    "ca-certificates",
    "curl",
    "gnupg",
    "software-properties-common",
    "conntrack",
    "socat",
    "jq",
)
KERNEL_MODULES = ("overlay", "br_netfilter")
KERNEL_MODULES_FILE = Path("/etc/modules-load.d/k8s.conf")
SYSCTL_FILE = Path("/etc/sysctl.d/k8s.conf")
SYSCTL_SETTINGS = {
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.ipv4.ip_forward": "1",
}
APT_KEYRINGS_DIR = Path("/etc/apt/keyrings")
DOCKER_KEYRING = APT_KEYRINGS_DIR / "docker.gpg"
DOCKER_APT_LIST = Path("/etc/apt/sources.list.d/docker.list")
KUBERNETES_KEYRING = APT_KEYRINGS_DIR / "kubernetes-apt-keyring.gpg"
KUBERNETES_APT_LIST = Path("/etc/apt/sources.list.d/kubernetes.list")
CONTAINERD_CONFIG = Path("/etc/containerd/config.toml")
KUBERNETES_PACKAGES = ("kubelet", "kubeadm", "kubectl")

# -- Upstream locations --
DOCKER_APT_URL = "https://download.docker.com/linux"
KUBERNETES_APT_URL = "https://pkgs.k8s.io/core:/stable:/v{minor}/deb/"
CALICO_MANIFEST_URL = "https://raw.githubusercontent.com/projectcalico/calico/{version}/manifests/calico.yaml"
DASHBOARD_MANIFEST_URL = "https://raw.githubusercontent.com/kubernetes/dashboard/{version}/aio/deploy/recommended.yaml"
LOCAL_PATH_MANIFEST_URL = (
    "https://raw.githubusercontent.com/rancher/local-path-provisioner/{version}/deploy/local-path-storage.yaml"
)

# -- Namespaces --
NS_KUBE_SYSTEM = "kube-system"
NS_DASHBOARD = "kubernetes-dashboard"
NS_LOCAL_PATH = "local-path-storage"
DEFAULT_CADDY_NAMESPACE = "example-caddy"
SYSTEM_NAMESPACES = frozenset({
    "kube-system",
    "kube-public",
    "kube-node-lease",
    "local-path-storage",
    "kube-flannel",
    "calico-system",
    "tigera-operator",
})

# -- Labels and selectors --
LABEL_CONTROL_PLANE = "node-role.kubernetes.io/control-plane"
CONTROL_PLANE_TAINT = f"{LABEL_CONTROL_PLANE}:NoSchedule"
CALICO_SELECTORS = ("k8s-app=calico-kube-controllers", "k8s-app=calico-node")
DASHBOARD_SELECTOR = "k8s-app=kubernetes-dashboard"
DEFAULT_STORAGE_CLASS_ANNOTATION = "storageclass.kubernetes.io/is-default-class"

# -- Dashboard --
DASHBOARD_SERVICE = "kubernetes-dashboard"
DASHBOARD_ADMIN_USER = "admin-user"
DASHBOARD_VIEWER_ROLE = "dashboard-viewer"
DASHBOARD_PATCH_MAX_RETRIES = 4
DASHBOARD_PATCH_RETRY_SECONDS = 5

# -- Caddy --
CADDY_DEPLOYMENT = "caddy-deployment"
CADDY_SERVICE = "caddy-service"

# -- Local path provisioner --
LOCAL_PATH_DEPLOYMENT = "local-path-provisioner"
LOCAL_PATH_STORAGE_CLASS = "local-path"

# -- Timeouts, retries and polling (seconds) --
DEFAULT_COMMAND_TIMEOUT = 120
DEFAULT_KUBEADM_INIT_TIMEOUT = 900
DEFAULT_KUBEADM_RESET_TIMEOUT = 300
DEFAULT_PACKAGE_INSTALL_TIMEOUT = 900
DEFAULT_NODE_REGISTER_TIMEOUT = 30
DEFAULT_NODE_READY_TIMEOUT = 300
DEFAULT_API_READY_TIMEOUT = 180
DEFAULT_CALICO_WAIT_TIMEOUT = 600
DEFAULT_DASHBOARD_WAIT_TIMEOUT = 360
DEFAULT_DEPLOYMENT_WAIT_TIMEOUT = 300
DEFAULT_POLL_INTERVAL = 5
DEFAULT_DASHBOARD_TOKEN_DURATION = 3600
KUBECTL_QUERY_TIMEOUT = 30
APPLY_MAX_ATTEMPTS = 4
APT_MAX_ATTEMPTS = 3
WAIT_UNREACHABLE_BUDGET = 6

# -- Output classification markers (matched case-insensitively) --
ALREADY_SATISFIED_MARKERS = (
    "alreadyexists",
    "already exists",
)
TRANSIENT_MARKERS = (
    "connection refused",
    "connection reset by peer",
    "unable to connect to the server",
    "the connection to the server",
    "i/o timeout",
    "tls handshake timeout",
    "no route to host",
    "etcdserver: request timed out",
    "temporary failure resolving",
    "temporary failure in name resolution",
    "could not resolve host",
    "service unavailable",
    "too many requests",
    "could not get lock",
)
NOT_FOUND_MARKERS = (
    "(notfound)",
    "not found",
)

# -- Preflight recommendations --
SUPPORTED_OS_IDS = frozenset({"debian", "ubuntu"})
MIN_CPUS = 2
MIN_MEMORY_GB = 4
MIN_DISK_GB = 20
OPTIONAL_COMMANDS = ("jq", "ufw")

# -- Status report --
EVENT_LIMIT = 10
NODE_SERVICES = ("containerd", "kubelet")
