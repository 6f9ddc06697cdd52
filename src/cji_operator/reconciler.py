"""Reconciliation of ClowdJobInvocation requests.

The reconciler is leveled: each pass re-derives what to do from the request,
its persisted status and the live Jobs, so any pass can be re-delivered
safely. Two facts make that hold:

* Job names are a pure function of (app, job definition, request), and the
  object cache treats creating an existing object as a no-op, so a pass that
  crashed after creating Jobs but before writing status does not invoke twice.
* Once ``status.jobs`` is non-empty the invocation phase never runs again;
  later passes only refresh ``status.completed``, which never goes back to
  false.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from . import metrics
from .builders.job_builder import (
    ConfigSource,
    build_managed_job,
    build_test_job,
    build_test_role_binding,
    build_test_service_account,
    config_sources,
    iqe_job_name,
    managed_job_name,
)
from .cache import ObjectCache
from .cluster import ClusterClient
from .config import OperatorSettings
from .constants import ACCESS_EDIT, KIND_APP, KIND_INVOCATION
from .errors import (
    DefinitionMissing,
    InvocationError,
    NotFoundTransient,
    NotReadyTransient,
)
from .events import EventRecorder, ObjectRef
from .logging import StructuredLogger
from .models import (
    ClowdApp,
    ClowdEnvironment,
    InvocationRequest,
    InvocationStatus,
    NamespacedName,
)
from .resources import APP, ENVIRONMENT, INVOCATION, JOB, InvocationResources
from .services.aggregation import synthesize_aggregated_secret
from .services.completion import evaluate, normalize_invoked


@dataclass
class ReconcileOutcome:
    completed: bool = False
    invoked: list[str] = field(default_factory=list)
    skipped_reason: str | None = None


def requested_count(request: InvocationRequest) -> int:
    """Number of finished Jobs that make a request complete (0: any one will do).

    When explicit jobs are requested alongside a test run, the test Job counts
    too, so the request is not declared complete while tests still run.
    """
    unique_jobs = len(dict.fromkeys(request.jobs))
    if unique_jobs == 0:
        return 0
    return unique_jobs + (1 if request.testing.requested else 0)


class JobInvocationReconciler:
    def __init__(
        self,
        cluster: ClusterClient,
        resources: InvocationResources,
        settings: OperatorSettings,
    ) -> None:
        self._cluster = cluster
        self._resources = resources
        self._settings = settings

    def reconcile(
        self, namespace: str, name: str, log: StructuredLogger, recorder: EventRecorder
    ) -> ReconcileOutcome:
        obj = self._cluster.get(INVOCATION, namespace, name)
        if obj is None:
            log.info("ClowdJobInvocation not found; assuming deleted", reason="NotFound")
            return ReconcileOutcome(skipped_reason="NotFound")

        request = InvocationRequest.from_obj(obj)
        status = request.status
        ref = ObjectRef(KIND_INVOCATION, namespace, name, request.uid)
        was_completed = status.completed

        # Persist what the cluster says before any guard, so a crash from here
        # on never loses an observed completion.
        self._refresh_completion(request, status)
        self._persist_status(request, status)

        if status.completed:
            if not was_completed:
                metrics.INVOCATIONS_COMPLETED_TOTAL.inc()
            recorder.normal(
                ref,
                "ClowdJobInvocationComplete",
                f"ClowdJobInvocation [{name}] has completed all jobs",
            )
            return ReconcileOutcome(completed=True, skipped_reason="Completed")

        if status.jobs:
            log.debug("Jobs already invoked; tracking completion only", jobs=status.jobs)
            return ReconcileOutcome(skipped_reason="AlreadyInvoked")

        log.info("Reconciliation started", event="reconcile", reason="InvocationStarted")

        app = self._resolve_app(request, ref, log, recorder)
        env = self._resolve_environment(app, ref, recorder)

        cache = ObjectCache(self._cluster, self._resources.registry, log)
        invoked: list[tuple[str, str]] = []

        for job_name in request.jobs:
            definition = app.job_definition(job_name)
            if definition is None:
                recorder.warning(
                    ObjectRef(KIND_APP, app.namespace, app.name),
                    "JobNameMissing",
                    f"ClowdApp [{app.name}] has no job named [{job_name}]",
                )
                log.info("Missing job definition", job=job_name, reason="JobNameMissing")
                raise DefinitionMissing(f"ClowdApp {app.name} has no job named {job_name}")

            nn = NamespacedName(namespace, managed_job_name(app.name, job_name, name))

            log.info("Invoking job", job=job_name, job_name=nn.name)
            try:
                job = build_managed_job(
                    definition=definition,
                    environment=env,
                    request=request,
                    nn=nn,
                    app_name=app.name,
                )
                cache.create(self._resources.invoked_job, nn, job)
            except InvocationError:
                recorder.warning(ref, "JobNotInvoked", f"Job [{job_name}] could not be invoked")
                raise
            status.record_job(nn.name)
            invoked.append(("job", nn.name))

        if request.testing.requested:
            nn = NamespacedName(namespace, iqe_job_name(name))
            try:
                self._stage_test_job(cache, request, app, env, nn, ref, log, recorder)
            except InvocationError as e:
                log.error(f"Test job could not be staged: {e}", job_name=nn.name, reason=e.reason)
                recorder.warning(ref, "IQEJobFailure", f"Job [{nn.name}] failed to invoke")
                raise
            status.record_job(nn.name)
            invoked.append(("test", nn.name))

        # Short jobs may already be done by now
        self._refresh_completion(request, status)
        cache.apply_all()
        self._persist_status(request, status)

        for job_type, job_name in invoked:
            metrics.JOBS_INVOKED_TOTAL.labels(type=job_type).inc()
            if job_type == "test":
                recorder.normal(ref, "IQEJobInvoked", f"Job [{job_name}] was invoked successfully")
            else:
                recorder.normal(
                    ref, "ClowdJobInvoked", f"Job [{job_name}] was invoked successfully"
                )
        if status.completed and not was_completed:
            metrics.INVOCATIONS_COMPLETED_TOTAL.inc()

        log.info(
            "Jobs invoked",
            jobs=[job_name for _, job_name in invoked],
            completed=status.completed,
            reason="InvocationSucceeded",
        )
        return ReconcileOutcome(completed=status.completed, invoked=[n for _, n in invoked])

    def _refresh_completion(self, request: InvocationRequest, status: InvocationStatus) -> None:
        status.jobs = normalize_invoked(status.jobs)
        if not status.jobs:
            return
        live_jobs = self._cluster.list(JOB, request.namespace)
        finished = evaluate(live_jobs, status.jobs, requested_count(request))
        status.completed = status.completed or finished

    def _persist_status(self, request: InvocationRequest, status: InvocationStatus) -> None:
        self._cluster.patch_status(INVOCATION, request.namespace, request.name, status.to_dict())

    def _resolve_app(
        self,
        request: InvocationRequest,
        ref: ObjectRef,
        log: StructuredLogger,
        recorder: EventRecorder,
    ) -> ClowdApp:
        obj = None
        if request.app_name:
            obj = self._cluster.get(APP, request.namespace, request.app_name)
        if obj is None:
            recorder.warning(
                ref,
                "ClowdAppMissing",
                f"ClowdApp [{request.app_name}] is missing; Job cannot be invoked",
            )
            raise NotFoundTransient(f"ClowdApp {request.namespace}/{request.app_name} not found")

        app = ClowdApp(obj)
        if not app.is_ready():
            recorder.warning(
                ObjectRef(KIND_APP, app.namespace, app.name),
                "ClowdAppNotReady",
                f"ClowdApp [{app.name}] is not ready",
            )
            log.info("App not yet ready, requeue", app=app.name, reason="ClowdAppNotReady")
            raise NotReadyTransient(f"ClowdApp {app.namespace}/{app.name} is not ready")
        return app

    def _resolve_environment(
        self, app: ClowdApp, ref: ObjectRef, recorder: EventRecorder
    ) -> ClowdEnvironment:
        obj = self._cluster.get(ENVIRONMENT, "", app.env_name) if app.env_name else None
        if obj is None:
            recorder.warning(
                ref,
                "ClowdEnvMissing",
                f"ClowdEnv [{app.env_name}] is missing; Job cannot be invoked",
            )
            raise NotFoundTransient(f"ClowdEnvironment {app.env_name} not found")
        return ClowdEnvironment(obj)

    def _stage_test_job(
        self,
        cache: ObjectCache,
        request: InvocationRequest,
        app: ClowdApp,
        env: ClowdEnvironment,
        nn: NamespacedName,
        ref: ObjectRef,
        log: StructuredLogger,
        recorder: EventRecorder,
    ) -> dict[str, Any]:
        # Rendering first rejects a missing marker before anything is staged
        job = build_test_job(
            request=request,
            app=app,
            environment=env,
            nn=nn,
            default_pull_secret=self._settings.test_pull_secret,
        )

        if ConfigSource.ENVIRONMENT in config_sources(env.config_access):
            synthesize_aggregated_secret(
                cache=cache,
                cluster=self._cluster,
                ident=self._resources.test_secret,
                request=request,
                app=app,
                nn=nn,
                log=log,
                recorder=recorder,
            )
        elif not config_sources(env.config_access):
            log.info("No config mounted to the test pod", job_name=nn.name)

        if env.k8s_access_level == ACCESS_EDIT:
            try:
                cache.create(
                    self._resources.test_service_account,
                    nn,
                    build_test_service_account(
                        request=request, nn=nn, pull_secrets=env.pull_secret_names
                    ),
                )
                cache.create(
                    self._resources.test_role_binding,
                    nn,
                    build_test_role_binding(request=request, nn=nn),
                )
            except InvocationError:
                recorder.warning(
                    ref, "ServiceAccountNotCreated", f"Unable to create service account [{nn.name}]"
                )
                raise

        cache.create(self._resources.test_job, nn, job)
        image = job["spec"]["template"]["spec"]["containers"][0]["image"]
        log.info("Test job staged", job_name=nn.name, image=image)
        return job
