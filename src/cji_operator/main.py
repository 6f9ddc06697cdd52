from __future__ import annotations

from contextlib import suppress
from time import monotonic
from typing import Any

import kopf
from kubernetes import client, config
from prometheus_client import start_http_server

from . import logging as structured_logging
from . import metrics
from .cluster import ClusterClient
from .config import OperatorSettings
from .constants import (
    API_GROUP_VERSION,
    KIND_INVOCATION,
    LABEL_MANAGED_BY,
    MANAGER_NAME,
    PLURAL_INVOCATIONS,
)
from .errors import InvocationError
from .events import EventRecorder
from .reconciler import JobInvocationReconciler
from .resources import build_registry
from .services.router import JobEventRouter


def _load_kube_config() -> None:
    # In-cluster first, then local kubeconfig; neither exists under unit tests
    try:
        config.load_incluster_config()
    except Exception:
        with suppress(Exception):
            config.load_kube_config()


def populate_memo(memo: kopf.Memo, operator_settings: OperatorSettings) -> None:
    """Build the long-lived collaborators shared by every handler."""
    cluster = ClusterClient(
        field_manager=operator_settings.field_manager,
        request_timeout=operator_settings.request_timeout,
    )
    memo.settings = operator_settings
    memo.resources = build_registry()
    memo.cluster = cluster
    memo.reconciler = JobInvocationReconciler(cluster, memo.resources, operator_settings)
    memo.router = JobEventRouter(cluster, structured_logging.logger.bind(controller="Job"))


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    operator_settings = OperatorSettings.from_env()
    structured_logging.setup_structured_logging(operator_settings.log_level)

    # Keep kopf's bookkeeping out of status.jobs/status.completed
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix=f"{MANAGER_NAME}.kopf.dev"
    )
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=f"{MANAGER_NAME}.kopf.dev"
    )
    settings.posting.level = 0
    settings.networking.request_timeout = operator_settings.request_timeout
    settings.execution.max_workers = operator_settings.max_workers

    with suppress(Exception):
        start_http_server(operator_settings.metrics_port)

    _load_kube_config()
    populate_memo(memo, operator_settings)

    structured_logging.logger.info(
        "Operator configured",
        event="startup",
        metrics_port=operator_settings.metrics_port,
        max_workers=operator_settings.max_workers,
        identities=len(memo.resources.registry),
    )


@kopf.on.create(API_GROUP_VERSION, PLURAL_INVOCATIONS)
@kopf.on.update(API_GROUP_VERSION, PLURAL_INVOCATIONS)
@kopf.on.resume(API_GROUP_VERSION, PLURAL_INVOCATIONS)
def reconcile_invocation(
    name: str,
    namespace: str,
    uid: str,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    started_at = monotonic()
    log = structured_logging.logger.bind(
        controller=KIND_INVOCATION, resource=f"{namespace}/{name}", uid=uid
    )
    recorder = EventRecorder(log, component=memo.settings.field_manager)
    try:
        outcome = memo.reconciler.reconcile(namespace, name, log, recorder)
        result = "skipped" if outcome.skipped_reason else "success"
        log.info(
            "ClowdJobInvocation reconciliation finished",
            event="reconcile",
            reason=outcome.skipped_reason or "ReconcileSucceeded",
            completed=outcome.completed,
            invoked=outcome.invoked,
        )
        metrics.RECONCILE_TOTAL.labels(result=result).inc()
    except InvocationError as e:
        if e.retryable:
            log.info(
                f"ClowdJobInvocation reconciliation will be retried: {e}",
                event="reconcile",
                reason=e.reason,
            )
            metrics.RECONCILE_TOTAL.labels(result="retry").inc()
            raise kopf.TemporaryError(str(e), delay=memo.settings.retry_delay) from e
        log.error(
            f"ClowdJobInvocation reconciliation failed: {e}",
            event="reconcile",
            reason=e.reason,
        )
        metrics.RECONCILE_TOTAL.labels(result="error").inc()
        raise kopf.PermanentError(str(e)) from e
    except Exception as e:
        log.error(
            f"ClowdJobInvocation reconciliation failed: {str(e)}",
            event="reconcile",
            reason="ReconcileFailed",
            exc_info=True,
        )
        metrics.RECONCILE_TOTAL.labels(result="error").inc()
        raise
    finally:
        metrics.RECONCILE_DURATION.observe(monotonic() - started_at)


@kopf.on.event("batch", "v1", "jobs", labels={LABEL_MANAGED_BY: MANAGER_NAME})
def route_job_event(event: dict[str, Any], memo: kopf.Memo, **_: Any) -> None:
    """Wake the requests that invoked a Job whenever that Job changes."""
    job = event.get("object") or {}
    try:
        memo.router.route(job)
    except client.exceptions.ApiException as e:
        metadata = job.get("metadata") or {}
        structured_logging.logger.warning(
            f"Could not route job event: {e.reason}",
            controller="Job",
            resource=f"{metadata.get('namespace')}/{metadata.get('name')}",
            event="job",
            reason="RouteFailed",
        )
