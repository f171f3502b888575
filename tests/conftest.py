"""Shared fixtures for kium tests."""

import base64
import json

import pytest
from kubernetes.client import (
    V1Container, V1DaemonSet, V1DaemonSetSpec, V1Deployment, V1DeploymentSpec,
    V1LabelSelector, V1LocalObjectReference, V1ObjectMeta, V1PodSpec,
    V1PodTemplateSpec, V1Secret, V1StatefulSet, V1StatefulSetSpec,
)
from kubernetes.client.exceptions import ApiException

from image_ref import format_reference
from kube_api import WorkloadKind
from registry_api import Credentials, RegistryError

# ---------------------------------------------------------------------------
# Tag inventories: real version tags mixed with noise
# ---------------------------------------------------------------------------

TAG_LISTS = {
    "index.docker.io/library/nginx": [
        "latest", "stable", "alpine", "1.25.3", "1.25.3-alpine", "1.24.0", "1.9.15", "mainline",
    ],
    "ghcr.io/acme/api": [
        "latest", "dev", "v1.10.0", "v1.9.2", "v1.2.0", "sha-abc1234",
    ],
    "index.docker.io/acme/worker": [
        "2024-01-05", "2024-03-17", "2023-12-31", "nightly",
    ],
}


# ---------------------------------------------------------------------------
# Object builders
# ---------------------------------------------------------------------------

def make_container(name="app", image="nginx:1.24.0", pull_policy="IfNotPresent"):
    return V1Container(name=name, image=image, image_pull_policy=pull_policy)


def _template(containers, pull_secrets):
    return V1PodTemplateSpec(
        metadata=V1ObjectMeta(labels={"app": "web"}),
        spec=V1PodSpec(
            containers=containers,
            image_pull_secrets=[V1LocalObjectReference(name=s) for s in pull_secrets] or None,
        ),
    )


def make_deployment(name="web", namespace="default", containers=None,
                    annotations=None, labels=None, pull_secrets=()):
    return V1Deployment(
        metadata=V1ObjectMeta(name=name, namespace=namespace,
                              annotations=annotations, labels=labels),
        spec=V1DeploymentSpec(
            selector=V1LabelSelector(match_labels={"app": "web"}),
            template=_template(containers or [make_container()], pull_secrets),
        ),
    )


def make_statefulset(name="db", namespace="default", containers=None,
                     annotations=None, labels=None, pull_secrets=()):
    return V1StatefulSet(
        metadata=V1ObjectMeta(name=name, namespace=namespace,
                              annotations=annotations, labels=labels),
        spec=V1StatefulSetSpec(
            selector=V1LabelSelector(match_labels={"app": "web"}),
            service_name=name,
            template=_template(containers or [make_container()], pull_secrets),
        ),
    )


def make_daemonset(name="agent", namespace="default", containers=None,
                   annotations=None, labels=None, pull_secrets=()):
    return V1DaemonSet(
        metadata=V1ObjectMeta(name=name, namespace=namespace,
                              annotations=annotations, labels=labels),
        spec=V1DaemonSetSpec(
            selector=V1LabelSelector(match_labels={"app": "web"}),
            template=_template(containers or [make_container()], pull_secrets),
        ),
    )


def make_pull_secret(auths, secret_type="kubernetes.io/dockerconfigjson"):
    """Build a Secret as the API returns it (data values base64 encoded)."""
    payload = base64.b64encode(json.dumps({"auths": auths}).encode()).decode()
    return V1Secret(type=secret_type, data={".dockerconfigjson": payload})


def basic_auth(username, password):
    return base64.b64encode(f"{username}:{password}".encode()).decode()


def policy_annotations(mode=None, **extra):
    """Annotations enabling auto-update, with optional mode/container/allow-tags."""
    annotations = {"image-updater.k8s.io/enabled": "true"}
    if mode:
        annotations["image-updater.k8s.io/mode"] = mode
    for key, value in extra.items():
        annotations["image-updater.k8s.io/" + key.replace("_", "-")] = value
    return annotations


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeCluster:
    """In-memory stand-in for ClusterClient."""

    def __init__(self, workloads=None, secrets=None):
        self.workloads = {kind: [] for kind in WorkloadKind}
        for kind, objects in (workloads or {}).items():
            self.workloads[kind] = list(objects)
        self.secrets = dict(secrets or {})
        self.replaced = []
        self.list_errors = {}
        self.replace_error = None

    def list_workloads(self, kind):
        if kind in self.list_errors:
            raise self.list_errors[kind]
        return list(self.workloads[kind])

    def replace_workload(self, kind, obj):
        if self.replace_error:
            raise self.replace_error
        self.replaced.append((kind, obj))
        return obj

    def get_secret(self, namespace, name):
        try:
            return self.secrets[(namespace, name)]
        except KeyError:
            raise ApiException(status=404, reason="Not Found")


class FakeRegistry:
    """Registry with fixed tag lists and digests keyed by formatted reference."""

    def __init__(self, tags=None, digests=None, error=None):
        self.tags = tags if tags is not None else dict(TAG_LISTS)
        self.digests = dict(digests or {})
        self.error = error
        self.credentials = []

    def factory(self, credentials, timeout=None):
        self.credentials.append(credentials)
        return self

    def list_tags(self, ref):
        if self.error:
            raise self.error
        return list(self.tags.get(ref.context, []))

    def get_digest(self, ref):
        if self.error:
            raise self.error
        key = format_reference(ref)
        if key not in self.digests:
            raise RegistryError(404, f"manifest unknown: {key}")
        return self.digests[key]


class AnonymousResolver:
    def __init__(self):
        self.calls = []

    def resolve(self, registry, secret_names, namespace):
        self.calls.append((registry, list(secret_names), namespace))
        return Credentials.anonymous()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def resolver():
    return AnonymousResolver()


@pytest.fixture
def cluster():
    return FakeCluster()
