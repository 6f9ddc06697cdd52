"""Shared fixtures: an in-memory cluster and builders for the custom resources."""

import base64
import copy
import json
from typing import Any

import pytest
from kubernetes import client

from cji_operator.config import OperatorSettings
from cji_operator.constants import API_GROUP_VERSION, APP_CONFIG_KEY, LABEL_MANAGED_BY, MANAGER_NAME
from cji_operator.errors import CacheConflict
from cji_operator.events import EventRecorder
from cji_operator.logging import StructuredLogger
from cji_operator.reconciler import JobInvocationReconciler
from cji_operator.resources import (
    APP,
    ENVIRONMENT,
    INVOCATION,
    JOB,
    SECRET,
    ResourceKind,
    build_registry,
)


class FakeCluster:
    """Dict-backed stand-in for ClusterClient."""

    def __init__(self):
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.created: list[tuple[str, str]] = []
        self.updated: list[tuple[str, str]] = []
        self.status_patches: list[tuple[str, dict[str, Any]]] = []
        self.annotation_patches: list[tuple[str, str, dict[str, Any]]] = []
        self.fail_create: dict[str, Exception] = {}
        self.fail_get: dict[str, Exception] = {}

    @staticmethod
    def _key(kind: ResourceKind, namespace: str, name: str) -> tuple[str, str, str]:
        return kind.kind, namespace if kind.namespaced else "", name

    def add(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("resourceVersion", "1")
        self.objects[self._key(kind, metadata.get("namespace", ""), metadata["name"])] = (
            copy.deepcopy(obj)
        )
        return obj

    def remove(self, kind: ResourceKind, namespace: str, name: str) -> None:
        self.objects.pop(self._key(kind, namespace, name), None)

    def stored(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any] | None:
        return self.objects.get(self._key(kind, namespace, name))

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any] | None:
        if kind.kind in self.fail_get:
            raise self.fail_get[kind.kind]
        obj = self.objects.get(self._key(kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(obj)
            for (k, ns, _), obj in sorted(self.objects.items())
            if k == kind.kind and (namespace is None or ns == namespace)
        ]

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        if kind.kind in self.fail_create:
            raise self.fail_create[kind.kind]
        metadata = obj["metadata"]
        key = self._key(kind, metadata.get("namespace", ""), metadata["name"])
        if key in self.objects:
            raise CacheConflict(f"{kind.kind} {metadata['name']} already exists")
        self.add(kind, copy.deepcopy(obj))
        self.created.append((kind.kind, metadata["name"]))
        return copy.deepcopy(obj)

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        metadata = obj["metadata"]
        key = self._key(kind, metadata.get("namespace", ""), metadata["name"])
        if key not in self.objects:
            raise CacheConflict(f"{kind.kind} {metadata['name']} is gone")
        self.objects[key] = copy.deepcopy(obj)
        self.updated.append((kind.kind, metadata["name"]))
        return copy.deepcopy(obj)

    def patch_status(
        self, kind: ResourceKind, namespace: str, name: str, status: dict[str, Any]
    ) -> None:
        obj = self.objects[self._key(kind, namespace, name)]
        obj.setdefault("status", {}).update(copy.deepcopy(status))
        self.status_patches.append((name, copy.deepcopy(status)))

    def patch_annotations(
        self, kind: ResourceKind, namespace: str, name: str, annotations: dict[str, Any]
    ) -> None:
        obj = self.objects.get(self._key(kind, namespace, name))
        if obj is None:
            raise client.exceptions.ApiException(status=404, reason="Not Found")
        obj["metadata"].setdefault("annotations", {}).update(annotations)
        self.annotation_patches.append((namespace, name, dict(annotations)))


class RecordingEvents(EventRecorder):
    """Keeps events in memory instead of posting them."""

    def __init__(self):
        super().__init__(StructuredLogger("test-events"))
        self.events: list[tuple[str, str, str, str]] = []

    def event(self, ref, type_, reason, message):
        self.events.append((ref.kind, ref.name, type_, reason))

    @property
    def reasons(self) -> list[str]:
        return [reason for _, _, _, reason in self.events]


def make_app(
    name: str = "app",
    namespace: str = "ns",
    env: str = "env",
    jobs: tuple[str, ...] = ("migrate",),
    ready: bool = True,
    plugin: str = "my-plugin",
) -> dict[str, Any]:
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": "ClowdApp",
        "metadata": {"name": name, "namespace": namespace, "uid": f"{name}-uid"},
        "spec": {
            "envName": env,
            "jobs": [
                {"name": job, "podSpec": {"image": f"quay.io/org/{name}:abc", "args": [job]}}
                for job in jobs
            ],
            "testing": {"iqePlugin": plugin},
        },
        "status": {
            "conditions": [
                {"type": "DeploymentsReady", "status": "True" if ready else "False"},
                {"type": "ReconciliationSuccessful", "status": "True"},
            ]
        },
    }


def make_environment(
    name: str = "env", config_access: str = "environment", access_level: str = "edit"
) -> dict[str, Any]:
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": "ClowdEnvironment",
        "metadata": {"name": name},
        "spec": {
            "providers": {
                "testing": {
                    "k8sAccessLevel": access_level,
                    "configAccess": config_access,
                    "iqe": {
                        "imageBase": "quay.io/cloudservices/iqe-tests",
                        "resources": {"limits": {"cpu": "2", "memory": "1Gi"}},
                    },
                },
                "pullSecrets": [{"namespace": "secrets", "name": "env-pull"}],
            },
            "resourceDefaults": {
                "limits": {"cpu": "500m", "memory": "512Mi"},
                "requests": {"cpu": "100m", "memory": "128Mi"},
            },
        },
    }


def make_invocation(
    name: str = "run-1",
    namespace: str = "ns",
    app: str = "app",
    jobs: tuple[str, ...] = ("migrate",),
    iqe: dict[str, Any] | None = None,
    status: dict[str, Any] | None = None,
) -> dict[str, Any]:
    spec: dict[str, Any] = {"appName": app, "jobs": list(jobs)}
    if iqe is not None:
        spec["testing"] = {"iqe": iqe}
    obj = {
        "apiVersion": API_GROUP_VERSION,
        "kind": "ClowdJobInvocation",
        "metadata": {"name": name, "namespace": namespace, "uid": f"{name}-uid"},
        "spec": spec,
    }
    if status is not None:
        obj["status"] = status
    return obj


def make_app_secret(app: str, namespace: str, config: dict[str, Any]) -> dict[str, Any]:
    encoded = base64.b64encode(json.dumps(config).encode()).decode()
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": app, "namespace": namespace},
        "data": {APP_CONFIG_KEY: encoded},
    }


def make_job(
    name: str, namespace: str = "ns", condition: str | None = None, managed: bool = True
) -> dict[str, Any]:
    labels = {LABEL_MANAGED_BY: MANAGER_NAME} if managed else {}
    job: dict[str, Any] = {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "status": {},
    }
    if condition:
        job["status"]["conditions"] = [{"type": condition, "status": "True"}]
    return job


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def log() -> StructuredLogger:
    return StructuredLogger("cji-operator-test")


@pytest.fixture
def resources():
    return build_registry()


@pytest.fixture
def settings() -> OperatorSettings:
    return OperatorSettings(test_pull_secret="default-pull")


@pytest.fixture
def reconciler(cluster, resources, settings) -> JobInvocationReconciler:
    return JobInvocationReconciler(cluster, resources, settings)


@pytest.fixture
def deployed(cluster) -> FakeCluster:
    """An app, its environment, its config secret and a sibling app in another namespace."""
    cluster.add(APP, make_app())
    cluster.add(APP, make_app(name="sibling", namespace="other", jobs=()))
    cluster.add(APP, make_app(name="stranger", namespace="ns", env="elsewhere", jobs=()))
    cluster.add(ENVIRONMENT, make_environment())
    cluster.add(SECRET, make_app_secret("app", "ns", {"publicPort": 8000}))
    cluster.add(SECRET, make_app_secret("sibling", "other", {"publicPort": 9000}))
    return cluster


@pytest.fixture
def invoke(deployed):
    """Add an invocation request to the deployed world and return its name."""

    def _invoke(**kwargs: Any) -> str:
        obj = make_invocation(**kwargs)
        deployed.add(INVOCATION, obj)
        return obj["metadata"]["name"]

    return _invoke


@pytest.fixture
def finish_job(cluster):
    def _finish(name: str, condition: str = "Complete", namespace: str = "ns") -> None:
        job = cluster.stored(JOB, namespace, name)
        job.setdefault("status", {})["conditions"] = [{"type": condition, "status": "True"}]

    return _finish
