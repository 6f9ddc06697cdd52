from __future__ import annotations

from dataclasses import dataclass

from kubernetes import client

from .constants import API_GROUP_VERSION, MANAGER_NAME
from .logging import StructuredLogger


@dataclass(frozen=True)
class ObjectRef:
    kind: str
    namespace: str
    name: str
    uid: str = ""
    api_version: str = API_GROUP_VERSION


class EventRecorder:
    """Posts Kubernetes events against the objects a reconciliation touches."""

    def __init__(self, log: StructuredLogger, component: str = MANAGER_NAME) -> None:
        self._log = log
        self._component = component

    def event(self, ref: ObjectRef, type_: str, reason: str, message: str) -> None:
        self._log.info(message, event="k8s-event", reason=reason, involved=f"{ref.kind}/{ref.name}")
        try:
            v1 = client.CoreV1Api()
            involved = client.V1ObjectReference(
                api_version=ref.api_version,
                kind=ref.kind,
                name=ref.name,
                namespace=ref.namespace,
                uid=ref.uid or None,
            )
            event = client.CoreV1Event(
                metadata=client.V1ObjectMeta(generate_name=f"{ref.name}-"),
                type=type_,
                reason=reason,
                message=message,
                involved_object=involved,
                source=client.V1EventSource(component=self._component),
            )
            v1.create_namespaced_event(namespace=ref.namespace, body=event)
        except Exception as e:
            # Events are best-effort
            self._log.debug(f"Failed to post event: {e}", reason=reason)

    def normal(self, ref: ObjectRef, reason: str, message: str) -> None:
        self.event(ref, "Normal", reason, message)

    def warning(self, ref: ObjectRef, reason: str, message: str) -> None:
        self.event(ref, "Warning", reason, message)
