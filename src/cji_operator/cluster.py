"""Thin dict-in, dict-out wrapper over the kubernetes client APIs."""

from __future__ import annotations

from typing import Any

from kubernetes import client

from .constants import MANAGER_NAME
from .errors import CacheConflict
from .resources import ResourceKind

# Built-in kinds go through the typed APIs; method names are
# ``{verb}_{suffix}`` on the API class.
_TYPED_APIS: dict[str, tuple[str, str]] = {
    "Job": ("BatchV1Api", "namespaced_job"),
    "Secret": ("CoreV1Api", "namespaced_secret"),
    "ServiceAccount": ("CoreV1Api", "namespaced_service_account"),
    "RoleBinding": ("RbacAuthorizationV1Api", "namespaced_role_binding"),
}


def _name_of(obj: dict[str, Any]) -> tuple[str, str]:
    metadata = obj.get("metadata") or {}
    return metadata.get("namespace", ""), metadata.get("name", "")


class ClusterClient:
    """Get, list, create and update cluster objects as plain API dicts."""

    def __init__(
        self, field_manager: str = MANAGER_NAME, request_timeout: float | None = None
    ) -> None:
        self.field_manager = field_manager
        self.request_timeout = request_timeout
        self._serializer = client.ApiClient()

    def _typed(self, kind: ResourceKind) -> tuple[Any, str] | None:
        entry = _TYPED_APIS.get(kind.kind)
        if entry is None:
            return None
        api_name, suffix = entry
        return getattr(client, api_name)(), suffix

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self._serializer.sanitize_for_serialization(obj)

    def _timeout(self) -> dict[str, Any]:
        if self.request_timeout is None:
            return {}
        return {"_request_timeout": self.request_timeout}

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any] | None:
        """Return the object, or ``None`` if it does not exist."""
        try:
            typed = self._typed(kind)
            if typed is not None:
                api, suffix = typed
                result = getattr(api, f"read_{suffix}")(
                    name=name, namespace=namespace, **self._timeout()
                )
            elif kind.namespaced:
                result = client.CustomObjectsApi().get_namespaced_custom_object(
                    group=kind.group,
                    version=kind.version,
                    namespace=namespace,
                    plural=kind.plural,
                    name=name,
                    **self._timeout(),
                )
            else:
                result = client.CustomObjectsApi().get_cluster_custom_object(
                    group=kind.group,
                    version=kind.version,
                    plural=kind.plural,
                    name=name,
                    **self._timeout(),
                )
        except client.exceptions.ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._to_dict(result)

    def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        """List objects in ``namespace``, or across all namespaces when it is ``None``."""
        typed = self._typed(kind)
        if typed is not None:
            api, suffix = typed
            if namespace is None:
                plain = suffix.removeprefix("namespaced_")
                result = getattr(api, f"list_{plain}_for_all_namespaces")(**self._timeout())
            else:
                result = getattr(api, f"list_{suffix}")(namespace=namespace, **self._timeout())
        elif namespace is None or not kind.namespaced:
            result = client.CustomObjectsApi().list_cluster_custom_object(
                group=kind.group, version=kind.version, plural=kind.plural, **self._timeout()
            )
        else:
            result = client.CustomObjectsApi().list_namespaced_custom_object(
                group=kind.group,
                version=kind.version,
                namespace=namespace,
                plural=kind.plural,
                **self._timeout(),
            )
        return list(self._to_dict(result).get("items") or [])

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        namespace, name = _name_of(obj)
        body = {"apiVersion": kind.api_version, "kind": kind.kind, **obj}
        try:
            typed = self._typed(kind)
            if typed is not None:
                api, suffix = typed
                result = getattr(api, f"create_{suffix}")(
                    namespace=namespace, body=body, field_manager=self.field_manager
                )
            else:
                result = client.CustomObjectsApi().create_namespaced_custom_object(
                    group=kind.group,
                    version=kind.version,
                    namespace=namespace,
                    plural=kind.plural,
                    body=body,
                    field_manager=self.field_manager,
                )
        except client.exceptions.ApiException as e:
            if e.status == 409:
                raise CacheConflict(f"{kind.kind} {namespace}/{name} already exists") from e
            raise
        return self._to_dict(result)

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the object; its ``resourceVersion`` makes stale writes conflict."""
        namespace, name = _name_of(obj)
        body = {"apiVersion": kind.api_version, "kind": kind.kind, **obj}
        try:
            typed = self._typed(kind)
            if typed is not None:
                api, suffix = typed
                result = getattr(api, f"replace_{suffix}")(
                    name=name, namespace=namespace, body=body, field_manager=self.field_manager
                )
            else:
                result = client.CustomObjectsApi().replace_namespaced_custom_object(
                    group=kind.group,
                    version=kind.version,
                    namespace=namespace,
                    plural=kind.plural,
                    name=name,
                    body=body,
                    field_manager=self.field_manager,
                )
        except client.exceptions.ApiException as e:
            if e.status == 409:
                raise CacheConflict(
                    f"{kind.kind} {namespace}/{name} was modified concurrently"
                ) from e
            raise
        return self._to_dict(result)

    def patch_status(
        self, kind: ResourceKind, namespace: str, name: str, status: dict[str, Any]
    ) -> None:
        try:
            client.CustomObjectsApi().patch_namespaced_custom_object_status(
                group=kind.group,
                version=kind.version,
                namespace=namespace,
                plural=kind.plural,
                name=name,
                body={"status": status},
                field_manager=self.field_manager,
            )
        except client.exceptions.ApiException as e:
            if e.status == 409:
                raise CacheConflict(
                    f"status of {namespace}/{name} was modified concurrently"
                ) from e
            raise

    def patch_annotations(
        self, kind: ResourceKind, namespace: str, name: str, annotations: dict[str, str | None]
    ) -> None:
        client.CustomObjectsApi().patch_namespaced_custom_object(
            group=kind.group,
            version=kind.version,
            namespace=namespace,
            plural=kind.plural,
            name=name,
            body={"metadata": {"annotations": annotations}},
            field_manager=self.field_manager,
        )
