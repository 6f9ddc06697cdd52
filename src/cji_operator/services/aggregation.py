"""Bundle every sibling app's config into one secret for the test job."""

from __future__ import annotations

from typing import Any

from ..builders.job_builder import managed_labels
from ..builders.secret_builder import build_aggregated_secret, decode_app_config
from ..cache import ObjectCache
from ..cluster import ClusterClient
from ..errors import UpstreamConfigMissingError
from ..events import EventRecorder, ObjectRef
from ..logging import StructuredLogger
from ..models import ClowdApp, InvocationRequest, NamespacedName
from ..resources import APP, SECRET, ResourceIdent


def apps_in_same_env(cluster: ClusterClient, app: ClowdApp) -> list[ClowdApp]:
    """All apps (in any namespace) deployed into the owning app's environment."""
    apps = [ClowdApp(obj) for obj in cluster.list(APP)]
    siblings = [a for a in apps if a.env_name == app.env_name]
    if not any(a.name == app.name and a.namespace == app.namespace for a in siblings):
        siblings.append(app)
    return sorted(siblings, key=lambda a: (a.namespace, a.name))


def collect_app_configs(
    cluster: ClusterClient,
    apps: list[ClowdApp],
    log: StructuredLogger,
    recorder: EventRecorder,
) -> dict[str, dict[str, Any]]:
    """Read every app's config secret; any gap fails the whole collection."""
    configs: dict[str, dict[str, Any]] = {}
    for sibling in apps:
        ref = ObjectRef("ClowdApp", sibling.namespace, sibling.name)
        secret = cluster.get(SECRET, sibling.namespace, sibling.name)
        if secret is None:
            recorder.warning(ref, "AppConfigMissing", f"app config [{sibling.name}] missing")
            raise UpstreamConfigMissingError(
                f"config secret {sibling.namespace}/{sibling.name} not found"
            )
        try:
            configs[sibling.name] = decode_app_config(secret)
        except ValueError as e:
            recorder.warning(
                ref, "UnmarshallError", f"app config [{sibling.name}] not unmarshalled"
            )
            log.error(
                f"Could not read app config: {e}", app=sibling.name, reason="AppConfigInvalid"
            )
            raise UpstreamConfigMissingError(
                f"config secret {sibling.namespace}/{sibling.name} is malformed: {e}"
            ) from e
    return configs


def synthesize_aggregated_secret(
    *,
    cache: ObjectCache,
    cluster: ClusterClient,
    ident: ResourceIdent,
    request: InvocationRequest,
    app: ClowdApp,
    nn: NamespacedName,
    log: StructuredLogger,
    recorder: EventRecorder,
) -> dict[str, Any]:
    """Stage the aggregated config secret for ``request``.

    Nothing is staged unless every sibling app's config could be read.
    """
    siblings = apps_in_same_env(cluster, app)
    configs = collect_app_configs(cluster, siblings, log, recorder)

    secret: dict[str, Any] = {}
    cache.create(ident, nn, secret)
    secret = build_aggregated_secret(
        base=secret,
        name=nn.name,
        namespace=nn.namespace,
        labels=managed_labels(request),
        owner_reference=request.owner().owner_reference(),
        app_configs=configs,
    )
    cache.update(ident, secret)
    log.info(
        "Aggregated test secret staged",
        secret_name=nn.name,
        apps=sorted(configs),
        reason="SecretStaged",
    )
    return secret
