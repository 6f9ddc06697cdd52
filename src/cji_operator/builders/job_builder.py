from __future__ import annotations

import enum
import hashlib
from typing import Any

from ..constants import (
    ACCESS_EDIT,
    ACCESS_VIEW,
    APP_CONFIG_KEY,
    APP_CONFIG_MOUNT_PATH,
    APP_CONFIG_VOLUME,
    CONFIG_ACCESS_APP,
    CONFIG_ACCESS_ENVIRONMENT,
    CONFIG_ACCESS_NONE,
    ENV_CONFIG_MOUNT_PATH,
    ENV_CONFIG_VOLUME,
    LABEL_APP,
    LABEL_INVOCATION,
    LABEL_JOB,
    LABEL_MANAGED_BY,
    LABEL_OWNER_KIND,
    LABEL_OWNER_NAME,
    LABEL_OWNER_NAMESPACE,
    LABEL_OWNER_UID,
    LABEL_VALUE_MAX_LENGTH,
    MANAGER_NAME,
    TEST_CLUSTER_ROLE,
    TEST_JOB_SUFFIX,
)
from ..errors import MissingMarkerError
from ..models import ClowdApp, ClowdEnvironment, InvocationRequest, NamespacedName


class ConfigSource(enum.Enum):
    """A config secret that can be mounted into the test pod."""

    ENVIRONMENT = "environment"
    APP = "app"


# Each config-access level mounts a superset of the level below it.
CONFIG_ACCESS_MOUNTS: dict[str, tuple[ConfigSource, ...]] = {
    CONFIG_ACCESS_ENVIRONMENT: (ConfigSource.ENVIRONMENT, ConfigSource.APP),
    CONFIG_ACCESS_APP: (ConfigSource.APP,),
    CONFIG_ACCESS_NONE: (),
}


def config_sources(config_access: str) -> tuple[ConfigSource, ...]:
    return CONFIG_ACCESS_MOUNTS.get(config_access, ())


def managed_job_name(app_name: str, job_name: str, request_name: str) -> str:
    return f"{app_name}-{job_name}-{request_name}"


def iqe_job_name(request_name: str) -> str:
    return f"{request_name}-{TEST_JOB_SUFFIX}"


def label_value(value: str) -> str:
    """Fit a value into a label, replacing the overflow with a short digest."""
    if len(value) <= LABEL_VALUE_MAX_LENGTH:
        return value
    digest = hashlib.sha256(value.encode()).hexdigest()[:8]
    head = value[: LABEL_VALUE_MAX_LENGTH - len(digest) - 1].rstrip("-_.")
    return f"{head}-{digest}"


def managed_labels(request: InvocationRequest, **extra: str) -> dict[str, str]:
    labels = dict(request.labels)
    labels.update({key: label_value(value) for key, value in extra.items()})
    labels.update(
        {
            LABEL_INVOCATION: label_value(request.name),
            LABEL_MANAGED_BY: MANAGER_NAME,
            LABEL_OWNER_KIND: request.owner().kind,
            LABEL_OWNER_NAMESPACE: request.namespace,
            LABEL_OWNER_NAME: label_value(request.name),
        }
    )
    if request.uid:
        labels[LABEL_OWNER_UID] = request.uid
    return labels


def _metadata(nn: NamespacedName, request: InvocationRequest, labels: dict[str, str]) -> dict:
    return {
        "name": nn.name,
        "namespace": nn.namespace,
        "labels": labels,
        "ownerReferences": [request.owner().owner_reference()],
    }


def _resources(requested: dict[str, Any] | None, defaults: dict[str, Any]) -> dict[str, Any]:
    """Per-section resources: what the definition asks for, else the environment default."""
    requested = requested or {}
    resources: dict[str, Any] = {}
    for section in ("limits", "requests"):
        value = requested.get(section) or defaults.get(section)
        if value:
            resources[section] = dict(value)
    return resources


def _app_config_volume(app_name: str) -> tuple[dict[str, Any], dict[str, Any]]:
    volume = {"name": APP_CONFIG_VOLUME, "secret": {"secretName": app_name}}
    mount = {"name": APP_CONFIG_VOLUME, "mountPath": APP_CONFIG_MOUNT_PATH}
    return volume, mount


def build_managed_job(
    *,
    definition: dict[str, Any],
    environment: ClowdEnvironment,
    request: InvocationRequest,
    nn: NamespacedName,
    app_name: str,
) -> dict[str, Any]:
    """Render the Job for one of an app's job definitions.

    Pure: the same inputs always give the same manifest, including its name.
    """
    pod_spec = definition.get("podSpec") or {}
    job_label = definition.get("name", "")
    labels = managed_labels(request, **{LABEL_APP: app_name, LABEL_JOB: job_label})

    config_volume, config_mount = _app_config_volume(app_name)
    volumes = [config_volume, *(pod_spec.get("volumes") or [])]
    volume_mounts = [config_mount, *(pod_spec.get("volumeMounts") or [])]

    env = [{"name": "ACG_CONFIG", "value": f"{APP_CONFIG_MOUNT_PATH}/{APP_CONFIG_KEY}"}]
    env.extend(pod_spec.get("env") or [])

    container: dict[str, Any] = {
        "name": nn.name,
        "image": pod_spec.get("image", ""),
        "env": env,
        "volumeMounts": volume_mounts,
    }
    if pod_spec.get("command"):
        container["command"] = list(pod_spec["command"])
    if pod_spec.get("args"):
        container["args"] = list(pod_spec["args"])
    resources = _resources(pod_spec.get("resources"), environment.resource_defaults)
    if resources:
        container["resources"] = resources

    template_spec: dict[str, Any] = {
        "restartPolicy": "Never",
        "containers": [container],
        "volumes": volumes,
    }
    pull_secrets = environment.pull_secret_names
    if pull_secrets:
        template_spec["imagePullSecrets"] = [{"name": name} for name in pull_secrets]

    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": _metadata(nn, request, labels),
        "spec": {
            "template": {
                "metadata": {"labels": dict(labels)},
                "spec": template_spec,
            },
        },
    }


def construct_test_command(plugin: str, marker: str, filter_: str = "") -> list[str]:
    """Build the test runner command line; a marker is mandatory."""
    if not marker:
        raise MissingMarkerError("test invocation requires a marker")
    command = ["iqe", "tests", "plugin", plugin.replace("-", "_"), "-m", marker]
    if filter_:
        command.extend(["-k", filter_])
    return command


def resolve_test_image(
    environment: ClowdEnvironment, request: InvocationRequest, app: ClowdApp
) -> str:
    tag = request.testing.image_tag or app.test_plugin
    return f"{environment.test_image_base}:{tag}"


def iqe_service_account_name(
    access_level: str, nn: NamespacedName, app: ClowdApp
) -> str | None:
    """Service account for the test pod; unknown levels leave the namespace default."""
    if access_level == ACCESS_EDIT:
        return nn.name
    if access_level == ACCESS_VIEW:
        return app.name
    return None


def build_test_job(
    *,
    request: InvocationRequest,
    app: ClowdApp,
    environment: ClowdEnvironment,
    nn: NamespacedName,
    default_pull_secret: str | None = None,
) -> dict[str, Any]:
    """Render the integration-test Job for a request.

    Raises MissingMarkerError before anything else when no marker is set.
    """
    command = construct_test_command(
        app.test_plugin, request.testing.marker, request.testing.filter
    )
    labels = managed_labels(request, **{LABEL_APP: app.name})

    env = [
        {"name": "ACG_CONFIG", "value": f"{APP_CONFIG_MOUNT_PATH}/{APP_CONFIG_KEY}"},
        {"name": "ENV_FOR_DYNACONF", "value": request.testing.dynaconf_env_name},
        {"name": "NAMESPACE", "value": nn.namespace},
        {"name": "CLOWDER_ENABLED", "value": "true"},
    ]

    volumes: list[dict[str, Any]] = []
    volume_mounts: list[dict[str, Any]] = []
    for source in config_sources(environment.config_access):
        if source is ConfigSource.ENVIRONMENT:
            volumes.append({"name": ENV_CONFIG_VOLUME, "secret": {"secretName": nn.name}})
            volume_mounts.append({"name": ENV_CONFIG_VOLUME, "mountPath": ENV_CONFIG_MOUNT_PATH})
        else:
            volume, mount = _app_config_volume(request.app_name)
            volumes.append(volume)
            volume_mounts.append(mount)

    container: dict[str, Any] = {
        "name": nn.name,
        "image": resolve_test_image(environment, request, app),
        "command": command,
        "env": env,
        "volumeMounts": volume_mounts,
        # Plugin tags are not commit based, so a cached image may be stale
        "imagePullPolicy": "Always",
    }
    resources = _resources(environment.test_resources, environment.resource_defaults)
    if resources:
        container["resources"] = resources

    pull_secrets = [default_pull_secret] if default_pull_secret else []
    pull_secrets += [s for s in environment.pull_secret_names if s not in pull_secrets]

    template_spec: dict[str, Any] = {
        "restartPolicy": "Never",
        "containers": [container],
        "volumes": volumes,
    }
    if pull_secrets:
        template_spec["imagePullSecrets"] = [{"name": name} for name in pull_secrets]
    service_account = iqe_service_account_name(environment.k8s_access_level, nn, app)
    if service_account:
        template_spec["serviceAccountName"] = service_account

    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": _metadata(nn, request, labels),
        "spec": {
            "template": {
                "metadata": {"labels": dict(labels)},
                "spec": template_spec,
            },
        },
    }


def build_test_service_account(
    *, request: InvocationRequest, nn: NamespacedName, pull_secrets: list[str]
) -> dict[str, Any]:
    manifest: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(nn, request, managed_labels(request)),
    }
    if pull_secrets:
        manifest["imagePullSecrets"] = [{"name": name} for name in pull_secrets]
    return manifest


def build_test_role_binding(*, request: InvocationRequest, nn: NamespacedName) -> dict[str, Any]:
    """Grant the test service account edit rights in its namespace."""
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "RoleBinding",
        "metadata": _metadata(nn, request, managed_labels(request)),
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": TEST_CLUSTER_ROLE,
        },
        "subjects": [{"kind": "ServiceAccount", "name": nn.name, "namespace": nn.namespace}],
    }
