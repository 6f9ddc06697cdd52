"""Read-side views over the custom resources the operator consumes.

The CRD schemas are owned elsewhere; these wrappers only pull out the fields
reconciliation needs and normalise missing values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .constants import (
    API_GROUP_VERSION,
    COND_DEPLOYMENTS_READY,
    COND_RECONCILIATION_SUCCESSFUL,
    KIND_INVOCATION,
)


@dataclass(frozen=True)
class NamespacedName:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class OwnerTag:
    """Back-pointer from a managed object to the request that owns it."""

    kind: str
    namespace: str
    name: str
    uid: str = ""
    api_version: str = API_GROUP_VERSION

    def owner_reference(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": False,
        }


@dataclass(frozen=True)
class IqeSpec:
    image_tag: str = ""
    marker: str = ""
    filter: str = ""
    dynaconf_env_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> IqeSpec:
        data = data or {}
        return cls(
            image_tag=data.get("imageTag") or "",
            marker=data.get("marker") or "",
            filter=data.get("filter") or "",
            dynaconf_env_name=data.get("dynaconfEnvName") or "",
        )

    @property
    def requested(self) -> bool:
        return any((self.image_tag, self.marker, self.filter, self.dynaconf_env_name))


@dataclass
class InvocationStatus:
    completed: bool = False
    jobs: list[str] = field(default_factory=list)
    pod_names: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> InvocationStatus:
        data = data or {}
        return cls(
            completed=bool(data.get("completed", False)),
            jobs=list(dict.fromkeys(data.get("jobs") or [])),
            pod_names=dict(data.get("podNames") or {}),
        )

    def record_job(self, job_name: str) -> None:
        if job_name not in self.jobs:
            self.jobs.append(job_name)

    def to_dict(self) -> dict[str, Any]:
        return {"completed": self.completed, "jobs": list(self.jobs), "podNames": self.pod_names}


@dataclass
class InvocationRequest:
    namespace: str
    name: str
    uid: str
    app_name: str
    jobs: list[str]
    testing: IqeSpec
    labels: dict[str, str]
    status: InvocationStatus

    @classmethod
    def from_obj(cls, obj: dict[str, Any]) -> InvocationRequest:
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        return cls(
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            uid=metadata.get("uid", ""),
            app_name=spec.get("appName") or "",
            jobs=list(spec.get("jobs") or []),
            testing=IqeSpec.from_dict((spec.get("testing") or {}).get("iqe")),
            labels=dict(metadata.get("labels") or {}),
            status=InvocationStatus.from_dict(obj.get("status")),
        )

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    def owner(self) -> OwnerTag:
        return OwnerTag(KIND_INVOCATION, self.namespace, self.name, self.uid)


class ClowdApp:
    """The application whose job definitions a request refers to."""

    def __init__(self, obj: dict[str, Any]):
        self.obj = obj
        metadata = obj.get("metadata") or {}
        self.name: str = metadata.get("name", "")
        self.namespace: str = metadata.get("namespace", "")
        self.spec: dict[str, Any] = obj.get("spec") or {}
        self.status: dict[str, Any] = obj.get("status") or {}

    @property
    def env_name(self) -> str:
        return self.spec.get("envName") or ""

    @property
    def test_plugin(self) -> str:
        return (self.spec.get("testing") or {}).get("iqePlugin") or ""

    def job_definition(self, job_name: str) -> dict[str, Any] | None:
        for job in self.spec.get("jobs") or []:
            if job.get("name") == job_name:
                return job
        return None

    def is_ready(self) -> bool:
        conditions = {
            c.get("type"): c.get("status")
            for c in self.status.get("conditions") or []
            if c.get("type") in (COND_DEPLOYMENTS_READY, COND_RECONCILIATION_SUCCESSFUL)
        }
        if conditions:
            return all(value == "True" for value in conditions.values())
        return self.status.get("ready") is True


class ClowdEnvironment:
    """Shared runtime settings for the apps deployed into an environment."""

    def __init__(self, obj: dict[str, Any]):
        self.obj = obj
        self.name: str = (obj.get("metadata") or {}).get("name", "")
        spec = obj.get("spec") or {}
        self.providers: dict[str, Any] = spec.get("providers") or {}
        self.resource_defaults: dict[str, Any] = spec.get("resourceDefaults") or {}

    @property
    def testing(self) -> dict[str, Any]:
        return self.providers.get("testing") or {}

    @property
    def test_image_base(self) -> str:
        return (self.testing.get("iqe") or {}).get("imageBase") or ""

    @property
    def test_resources(self) -> dict[str, Any]:
        return (self.testing.get("iqe") or {}).get("resources") or {}

    @property
    def k8s_access_level(self) -> str:
        return self.testing.get("k8sAccessLevel") or ""

    @property
    def config_access(self) -> str:
        return self.testing.get("configAccess") or ""

    @property
    def pull_secret_names(self) -> list[str]:
        names = []
        for ref in self.providers.get("pullSecrets") or []:
            name = ref.get("name") if isinstance(ref, dict) else ref
            if name and name not in names:
                names.append(name)
        return names
