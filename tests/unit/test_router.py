"""Unit tests for routing Job events back to invocation requests."""

import pytest
from prometheus_client import REGISTRY

from cji_operator.constants import ANNOTATION_RECONCILE_TRIGGER
from cji_operator.models import NamespacedName
from cji_operator.resources import INVOCATION, JOB
from cji_operator.services.router import JobEventRouter

from conftest import make_invocation, make_job


@pytest.fixture
def router(cluster, log):
    cluster.add(INVOCATION, make_invocation(name="run-1", status={"jobs": ["app-migrate-run-1"]}))
    cluster.add(INVOCATION, make_invocation(name="run-2", status={"jobs": ["app-migrate-run-2"]}))
    cluster.add(INVOCATION, make_invocation(name="fresh"))
    cluster.add(
        INVOCATION,
        make_invocation(
            name="run-1", namespace="elsewhere", status={"jobs": ["app-migrate-run-1"]}
        ),
    )
    return JobEventRouter(cluster, log)


def test_job_maps_to_request_that_invoked_it(router):
    assert router.requests_for_job(make_job("app-migrate-run-1")) == [
        NamespacedName("ns", "run-1")
    ]


def test_unmanaged_job_is_ignored(router, cluster):
    job = make_job("app-migrate-run-1", managed=False)

    assert router.route(job) == []
    assert cluster.annotation_patches == []


def test_job_nobody_invoked_is_ignored(router, cluster):
    assert router.route(make_job("unrelated")) == []
    assert cluster.annotation_patches == []


def test_route_stamps_trigger_annotation(router, cluster):
    job = make_job("app-migrate-run-2")
    job["metadata"]["resourceVersion"] = "77"
    before = REGISTRY.get_sample_value("cji_operator_watch_enqueue_total") or 0.0

    router.route(job)

    assert cluster.annotation_patches == [
        ("ns", "run-2", {ANNOTATION_RECONCILE_TRIGGER: "app-migrate-run-2@77"})
    ]
    assert REGISTRY.get_sample_value("cji_operator_watch_enqueue_total") == before + 1


def test_owner_reference_finds_request_before_status_records_job(router):
    job = make_job("app-migrate-fresh", condition="Complete")
    job["metadata"]["ownerReferences"] = [
        {"kind": "ClowdJobInvocation", "name": "fresh", "uid": "fresh-uid"}
    ]

    assert router.requests_for_job(job) == [NamespacedName("ns", "fresh")]


def test_owner_reference_and_status_yield_request_once(router):
    job = make_job("app-migrate-run-1")
    job["metadata"]["ownerReferences"] = [
        {"kind": "ClowdJobInvocation", "name": "run-1", "uid": "run-1-uid"}
    ]

    assert router.requests_for_job(job) == [NamespacedName("ns", "run-1")]


def test_owner_reference_with_stale_uid_is_ignored(router):
    job = make_job("app-migrate-fresh")
    job["metadata"]["ownerReferences"] = [
        {"kind": "ClowdJobInvocation", "name": "fresh", "uid": "recreated-uid"}
    ]

    assert router.requests_for_job(job) == []


def test_finished_job_wakes_request_whose_status_write_is_pending(
    reconciler, invoke, cluster, events, log, finish_job
):
    invoke()
    reconciler.reconcile("ns", "run-1", log, events)
    cluster.stored(INVOCATION, "ns", "run-1")["status"]["jobs"] = []
    finish_job("app-migrate-run-1")

    routed = JobEventRouter(cluster, log).route(cluster.stored(JOB, "ns", "app-migrate-run-1"))

    assert routed == [NamespacedName("ns", "run-1")]
    assert cluster.annotation_patches[-1][:2] == ("ns", "run-1")


def test_vanished_request_does_not_stop_the_rest(router, cluster):
    cluster.add(INVOCATION, make_invocation(name="run-3", status={"jobs": ["shared"]}))
    cluster.add(INVOCATION, make_invocation(name="run-4", status={"jobs": ["shared"]}))
    requests = router.requests_for_job(make_job("shared"))
    cluster.remove(INVOCATION, "ns", "run-3")

    enqueued = router.enqueue(requests, make_job("shared"))

    assert enqueued == [NamespacedName("ns", "run-4")]
    assert [patch[1] for patch in cluster.annotation_patches] == ["run-4"]
