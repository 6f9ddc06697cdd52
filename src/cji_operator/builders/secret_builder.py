from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from ..constants import AGGREGATED_CONFIG_KEY, AGGREGATED_CONFIG_ROOT, APP_CONFIG_KEY


def decode_app_config(secret: dict[str, Any]) -> dict[str, Any]:
    """Return the app config JSON object stored in an app's config secret.

    Raises ValueError when the key is missing or the payload is not a JSON object.
    """
    data = secret.get("data") or {}
    raw = data.get(APP_CONFIG_KEY)
    if raw is None:
        # Secrets written with stringData and read back before encoding
        raw_text = (secret.get("stringData") or {}).get(APP_CONFIG_KEY)
        if raw_text is None:
            raise ValueError(f"secret has no {APP_CONFIG_KEY} entry")
    else:
        try:
            raw_text = base64.b64decode(raw, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError(f"{APP_CONFIG_KEY} is not valid base64: {e}") from e

    try:
        config = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise ValueError(f"{APP_CONFIG_KEY} is not valid JSON: {e}") from e
    if not isinstance(config, dict):
        raise ValueError(f"{APP_CONFIG_KEY} must hold a JSON object")
    return config


def encode_aggregated_config(app_configs: dict[str, dict[str, Any]]) -> str:
    payload = {AGGREGATED_CONFIG_ROOT: app_configs}
    encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
    return base64.b64encode(encoded).decode("ascii")


def build_aggregated_secret(
    *,
    base: dict[str, Any],
    name: str,
    namespace: str,
    labels: dict[str, str],
    owner_reference: dict[str, Any],
    app_configs: dict[str, dict[str, Any]],
) -> dict[str, Any]:
    """Fill ``base`` (empty, or the live secret) with the aggregated app configs."""
    secret = dict(base)
    metadata = dict(secret.get("metadata") or {})
    metadata["name"] = name
    metadata["namespace"] = namespace
    metadata["labels"] = {**(metadata.get("labels") or {}), **labels}
    metadata["ownerReferences"] = [owner_reference]
    secret["metadata"] = metadata
    secret["type"] = secret.get("type") or "Opaque"
    secret["data"] = {AGGREGATED_CONFIG_KEY: encode_aggregated_config(app_configs)}
    secret.pop("stringData", None)
    return secret
