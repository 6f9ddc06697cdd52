"""Route Job changes to the invocation requests that invoked them."""

from __future__ import annotations

from typing import Any

from kubernetes import client

from .. import metrics
from ..cluster import ClusterClient
from ..constants import (
    ANNOTATION_RECONCILE_TRIGGER,
    KIND_INVOCATION,
    LABEL_MANAGED_BY,
    MANAGER_NAME,
)
from ..logging import StructuredLogger
from ..models import InvocationStatus, NamespacedName
from ..resources import INVOCATION


def _owned_by(item_meta: dict[str, Any], owner_refs: list[dict[str, Any]]) -> bool:
    for ref in owner_refs:
        if ref.get("name") != item_meta.get("name"):
            continue
        if not ref.get("uid") or ref.get("uid") == item_meta.get("uid"):
            return True
    return False


class JobEventRouter:
    """Finds the requests a Job belongs to and asks kopf to reconcile them.

    A Job belongs to a request when the request lists it in ``status.jobs``
    or when the Job's owner reference points at the request. The owner
    reference covers the window between creating a Job and recording it.

    A reconcile is requested by stamping an annotation that names the Job
    revision, so repeated events for the same revision change nothing and
    trigger nothing.
    """

    def __init__(self, cluster: ClusterClient, log: StructuredLogger) -> None:
        self._cluster = cluster
        self._log = log

    def requests_for_job(self, job: dict[str, Any]) -> list[NamespacedName]:
        metadata = job.get("metadata") or {}
        labels = metadata.get("labels") or {}
        if labels.get(LABEL_MANAGED_BY) != MANAGER_NAME:
            return []

        job_name = metadata.get("name")
        namespace = metadata.get("namespace")
        if not job_name or not namespace:
            return []

        owner_refs = [
            ref
            for ref in metadata.get("ownerReferences") or []
            if ref.get("kind") == KIND_INVOCATION
        ]

        requests: list[NamespacedName] = []
        for item in self._cluster.list(INVOCATION, namespace):
            item_meta = item.get("metadata") or {}
            status = InvocationStatus.from_dict(item.get("status"))
            if job_name in status.jobs or _owned_by(item_meta, owner_refs):
                nn = NamespacedName(item_meta.get("namespace", namespace), item_meta["name"])
                if nn not in requests:
                    requests.append(nn)
        return requests

    def enqueue(self, requests: list[NamespacedName], job: dict[str, Any]) -> list[NamespacedName]:
        metadata = job.get("metadata") or {}
        trigger = f"{metadata.get('name')}@{metadata.get('resourceVersion', '')}"
        enqueued: list[NamespacedName] = []
        for nn in requests:
            try:
                self._cluster.patch_annotations(
                    INVOCATION, nn.namespace, nn.name, {ANNOTATION_RECONCILE_TRIGGER: trigger}
                )
            except client.exceptions.ApiException as e:
                self._log.warning(
                    f"Could not request reconcile: {e.reason}",
                    resource=str(nn),
                    job_name=metadata.get("name"),
                    event="job",
                    reason="EnqueueFailed",
                )
                continue
            metrics.WATCH_ENQUEUE_TOTAL.inc()
            enqueued.append(nn)
            self._log.debug(
                "Requested reconcile for job change",
                resource=str(nn),
                job_name=metadata.get("name"),
                event="job",
                reason="ReconcileRequested",
            )
        return enqueued

    def route(self, job: dict[str, Any]) -> list[NamespacedName]:
        requests = self.requests_for_job(job)
        if requests:
            return self.enqueue(requests, job)
        return requests
