"""Resource identities: which kinds of object the operator manages, and how many.

A ``ResourceIdent`` is the key the object cache stages objects under. Single
identities allow one object per owning request; Multi identities allow a
family of objects told apart by namespaced name.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .constants import API_GROUP_VERSION, PLURAL_APPS, PLURAL_ENVIRONMENTS, PLURAL_INVOCATIONS


class Cardinality(enum.Enum):
    SINGLE = "single"
    MULTI = "multi"


@dataclass(frozen=True)
class ResourceKind:
    api_version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]


JOB = ResourceKind("batch/v1", "Job", "jobs")
SECRET = ResourceKind("v1", "Secret", "secrets")
SERVICE_ACCOUNT = ResourceKind("v1", "ServiceAccount", "serviceaccounts")
ROLE_BINDING = ResourceKind("rbac.authorization.k8s.io/v1", "RoleBinding", "rolebindings")
INVOCATION = ResourceKind(API_GROUP_VERSION, "ClowdJobInvocation", PLURAL_INVOCATIONS)
APP = ResourceKind(API_GROUP_VERSION, "ClowdApp", PLURAL_APPS)
ENVIRONMENT = ResourceKind(API_GROUP_VERSION, "ClowdEnvironment", PLURAL_ENVIRONMENTS, False)


@dataclass(frozen=True)
class ResourceIdent:
    provider: str
    purpose: str
    kind: ResourceKind
    cardinality: Cardinality

    @property
    def logical_name(self) -> str:
        return f"{self.provider}_{self.purpose}"

    @property
    def single(self) -> bool:
        return self.cardinality is Cardinality.SINGLE

    def __str__(self) -> str:
        return f"{self.logical_name}({self.kind.kind})"


class ResourceRegistry:
    """Identities declared once at startup and shared by every reconciliation."""

    def __init__(self) -> None:
        self._idents: dict[str, ResourceIdent] = {}

    def declare(
        self, provider: str, purpose: str, kind: ResourceKind, cardinality: Cardinality
    ) -> ResourceIdent:
        ident = ResourceIdent(provider, purpose, kind, cardinality)
        existing = self._idents.get(ident.logical_name)
        if existing is not None:
            if existing != ident:
                raise ValueError(
                    f"resource identity {ident.logical_name} already declared as {existing}"
                )
            return existing
        self._idents[ident.logical_name] = ident
        return ident

    def contains(self, ident: ResourceIdent) -> bool:
        return self._idents.get(ident.logical_name) == ident

    def __iter__(self):
        return iter(self._idents.values())

    def __len__(self) -> int:
        return len(self._idents)


@dataclass(frozen=True)
class InvocationResources:
    """The identities used by the job invocation reconciler."""

    registry: ResourceRegistry
    test_job: ResourceIdent
    invoked_job: ResourceIdent
    test_secret: ResourceIdent
    test_service_account: ResourceIdent
    test_role_binding: ResourceIdent


def build_registry() -> InvocationResources:
    registry = ResourceRegistry()
    return InvocationResources(
        registry=registry,
        test_job=registry.declare("core", "iqe_clowdjob", JOB, Cardinality.SINGLE),
        invoked_job=registry.declare("core", "clowdjob", JOB, Cardinality.MULTI),
        test_secret=registry.declare("core", "iqe_secret", SECRET, Cardinality.SINGLE),
        test_service_account=registry.declare(
            "core", "iqe_serviceaccount", SERVICE_ACCOUNT, Cardinality.SINGLE
        ),
        test_role_binding=registry.declare(
            "core", "iqe_rolebinding", ROLE_BINDING, Cardinality.SINGLE
        ),
    )
