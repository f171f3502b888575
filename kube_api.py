"""Kubernetes API access for the image updater.

Wraps the official ``kubernetes`` client: building an API client from the
first usable configuration source, listing and replacing the supported
workload kinds, reading pull secrets, and the direct image assignment used
by the manual-trigger API.
"""

import logging
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from kubernetes import client, config
from kubernetes.config import ConfigException

logger = logging.getLogger(__name__)

RESTART_ANNOTATION = "kubectl.kubernetes.io/restartedAt"
PULL_ALWAYS = "Always"


class ClusterConfigError(Exception):
    """No usable Kubernetes configuration could be found."""


class ContainerNotFound(LookupError):
    """The named container does not exist in the workload."""


class WorkloadKind(str, Enum):
    """Supported Kubernetes workload types."""

    DEPLOYMENT = "deployment"
    DAEMONSET = "daemonset"
    STATEFULSET = "statefulset"

    @property
    def api_name(self) -> str:
        """Suffix used by the AppsV1Api method names."""
        return {
            WorkloadKind.DEPLOYMENT: "deployment",
            WorkloadKind.DAEMONSET: "daemon_set",
            WorkloadKind.STATEFULSET: "stateful_set",
        }[self]


def restart_timestamp() -> str:
    """Current time in RFC 3339, as kubectl writes restartedAt."""
    return datetime.now().astimezone().replace(microsecond=0).isoformat()


def _client_from_file(path: str) -> client.ApiClient:
    if not Path(path).exists():
        raise ConfigException(f"kubeconfig {path} does not exist")
    return config.new_client_from_config(config_file=path)


def _client_in_cluster() -> client.ApiClient:
    configuration = client.Configuration()
    config.load_incluster_config(client_configuration=configuration)
    return client.ApiClient(configuration)


def config_strategies(kubeconfig: str = "") -> List[Tuple[str, Callable[[], client.ApiClient]]]:
    """Ordered candidate configuration sources: explicit file, ~/.kube/config, in-cluster."""
    strategies = []
    if kubeconfig:
        strategies.append((f"kubeconfig {kubeconfig}", lambda: _client_from_file(kubeconfig)))
    home = os.environ.get("HOME", "")
    if home:
        local = os.path.join(home, ".kube", "config")
        strategies.append((f"local config {local}", lambda: _client_from_file(local)))
    strategies.append(("in-cluster config", _client_in_cluster))
    return strategies


def build_api_client(kubeconfig: str = "",
                     strategies: Optional[List[Tuple[str, Callable[[], client.ApiClient]]]] = None
                     ) -> client.ApiClient:
    """Return an ApiClient from the first configuration source that works.

    Raises:
        ClusterConfigError: if every source fails
    """
    if strategies is None:
        strategies = config_strategies(kubeconfig)

    for name, strategy in strategies:
        try:
            api_client = strategy()
        except (ConfigException, OSError, ValueError) as e:
            logger.debug(f"Kubernetes {name} not usable: {e}")
            continue
        logger.info(f"Using Kubernetes {name}")
        return api_client

    raise ClusterConfigError("failed to create kubernetes config: no valid configuration found")


class ClusterClient:
    """Thin wrapper over AppsV1Api/CoreV1Api for the supported workload kinds."""

    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.apps = client.AppsV1Api(api_client)
        self.core = client.CoreV1Api(api_client)

    @classmethod
    def from_settings(cls, kubeconfig: str = "") -> "ClusterClient":
        return cls(build_api_client(kubeconfig))

    def list_workloads(self, kind: WorkloadKind) -> List[Any]:
        """List every object of *kind* across all namespaces."""
        method = getattr(self.apps, f"list_{kind.api_name}_for_all_namespaces")
        return list(method().items or [])

    def get_workload(self, kind: WorkloadKind, namespace: str, name: str) -> Any:
        method = getattr(self.apps, f"read_namespaced_{kind.api_name}")
        return method(name, namespace)

    def replace_workload(self, kind: WorkloadKind, obj: Any) -> Any:
        """Write the whole object back; fails with 409 if it changed meanwhile."""
        method = getattr(self.apps, f"replace_namespaced_{kind.api_name}")
        return method(obj.metadata.name, obj.metadata.namespace, obj)

    def get_secret(self, namespace: str, name: str) -> Any:
        return self.core.read_namespaced_secret(name, namespace)

    def set_image(self, kind: WorkloadKind, namespace: str, name: str,
                  container: str, image: str) -> str:
        """Assign *image* to a container directly, bypassing update policies.

        An empty *container* means the first container.  If the container
        already runs *image* with pull policy Always, the workload is
        restarted instead so the image is pulled again.

        Returns:
            Human readable result message

        Raises:
            ContainerNotFound: if no container has the given name
            kubernetes.client.exceptions.ApiException: on API failures
        """
        obj = self.get_workload(kind, namespace, name)
        template = obj.spec.template
        containers = template.spec.containers or []

        if not container and containers:
            container = containers[0].name

        target = next((c for c in containers if c.name == container), None)
        if target is None:
            raise ContainerNotFound(f"container {container} not found in {kind.value}")

        if target.image == image and target.image_pull_policy == PULL_ALWAYS:
            if template.metadata is None:
                template.metadata = client.V1ObjectMeta()
            if template.metadata.annotations is None:
                template.metadata.annotations = {}
            template.metadata.annotations[RESTART_ANNOTATION] = restart_timestamp()
            self.replace_workload(kind, obj)
            logger.info(f"Restarted {kind.value} {namespace}/{name} to pull {image}")
            return (f"Updated {kind.value} {namespace}/{name} (container: {container}) "
                    f"by restarting to fetch latest image {image}")

        if target.image != image:
            old_image = target.image
            target.image = image
            self.replace_workload(kind, obj)
            logger.info(f"Updated {kind.value} {namespace}/{name} container {container}: "
                        f"{old_image} -> {image}")
            return f"Updated {kind.value} {namespace}/{name} (container: {container}) with image {image}"

        return (f"Image {image} is already up to date for {kind.value} "
                f"{namespace}/{name} (container: {container})")
