#!/usr/bin/env python3
from __future__ import annotations

import argparse
from contextlib import suppress

from kubernetes import config

from cji_operator import logging as structured_logging
from cji_operator.cluster import ClusterClient
from cji_operator.config import OperatorSettings
from cji_operator.constants import KIND_INVOCATION
from cji_operator.errors import InvocationError
from cji_operator.events import EventRecorder
from cji_operator.reconciler import JobInvocationReconciler
from cji_operator.resources import build_registry


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Run a single reconciliation of one ClowdJobInvocation"
    )
    parser.add_argument("--namespace", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--field-manager", default="clowder-jobinvocation-operator-once")
    args = parser.parse_args()

    settings = OperatorSettings.from_env()
    structured_logging.setup_structured_logging(settings.log_level)

    # Load kube config (in-cluster or local)
    with suppress(Exception):
        config.load_incluster_config()
    with suppress(Exception):
        config.load_kube_config()

    cluster = ClusterClient(
        field_manager=args.field_manager, request_timeout=settings.request_timeout
    )
    reconciler = JobInvocationReconciler(cluster, build_registry(), settings)
    log = structured_logging.logger.bind(
        controller=KIND_INVOCATION, resource=f"{args.namespace}/{args.name}"
    )

    try:
        outcome = reconciler.reconcile(args.namespace, args.name, log, EventRecorder(log))
    except InvocationError as e:
        print(f"{args.namespace}/{args.name}: {e} (retryable={e.retryable})")
        return 1

    if outcome.skipped_reason:
        print(f"{args.namespace}/{args.name}: nothing to do ({outcome.skipped_reason})")
    else:
        print(f"{args.namespace}/{args.name}: invoked {', '.join(outcome.invoked) or 'nothing'}")
    print(f"completed={outcome.completed}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
