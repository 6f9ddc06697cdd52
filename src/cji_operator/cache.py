"""Per-reconciliation staging layer for cluster writes.

Callers ``create`` the objects they want to exist and ``update`` the ones they
need to change; nothing is written until ``apply_all`` runs at the end of the
pass. Creating an object that already exists is a no-op that hands back the
live state, which is what makes re-running a pass safe.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass
from typing import Any

from . import metrics
from .cluster import ClusterClient
from .errors import CacheLookupError, CardinalityError, NotStagedError
from .logging import StructuredLogger
from .models import NamespacedName
from .resources import ResourceIdent, ResourceRegistry


class Origin(enum.Enum):
    CREATED = "created"
    FETCHED = "fetched"
    TO_UPDATE = "to_update"


@dataclass
class CacheEntry:
    ident: ResourceIdent
    nn: NamespacedName
    obj: dict[str, Any]
    origin: Origin


class ObjectCache:
    def __init__(
        self, cluster: ClusterClient, registry: ResourceRegistry, log: StructuredLogger
    ) -> None:
        self._cluster = cluster
        self._registry = registry
        self._log = log
        # Insertion order is the order objects are written in apply_all
        self._entries: dict[tuple[str, NamespacedName], CacheEntry] = {}

    def _check_ident(self, ident: ResourceIdent) -> None:
        if not self._registry.contains(ident):
            raise CacheLookupError(f"resource identity {ident} was never declared")

    def _entries_for(self, ident: ResourceIdent) -> list[CacheEntry]:
        return [e for (name, _), e in self._entries.items() if name == ident.logical_name]

    def create(
        self, ident: ResourceIdent, nn: NamespacedName, obj: dict[str, Any]
    ) -> dict[str, Any]:
        """Stage ``obj`` for creation unless it already exists.

        When the object exists (in the cluster or earlier in this pass), ``obj``
        is refilled in place with that state and nothing new is staged.
        """
        self._check_ident(ident)
        key = (ident.logical_name, nn)

        entry = self._entries.get(key)
        if entry is None:
            if ident.single:
                others = [e.nn for e in self._entries_for(ident)]
                if others:
                    raise CardinalityError(
                        f"{ident} already holds {others[0]}; cannot also stage {nn}"
                    )
            try:
                live = self._cluster.get(ident.kind, nn.namespace, nn.name)
            except Exception as e:
                raise CacheLookupError(f"failed to look up {ident.kind.kind} {nn}: {e}") from e

            if live is None:
                body = copy.deepcopy(obj)
                metadata = body.setdefault("metadata", {})
                metadata.setdefault("name", nn.name)
                metadata.setdefault("namespace", nn.namespace)
                entry = CacheEntry(ident, nn, body, Origin.CREATED)
                self._log.debug(
                    "Staged object for creation", ident=ident.logical_name, object_ref=str(nn)
                )
            else:
                entry = CacheEntry(ident, nn, live, Origin.FETCHED)
                self._log.debug(
                    "Object already exists", ident=ident.logical_name, object_ref=str(nn)
                )
            self._entries[key] = entry

        obj.clear()
        obj.update(copy.deepcopy(entry.obj))
        return obj

    def update(self, ident: ResourceIdent, obj: dict[str, Any]) -> None:
        """Stage new contents for an object this pass already created or fetched."""
        self._check_ident(ident)
        if ident.single:
            candidates = self._entries_for(ident)
            entry = candidates[0] if candidates else None
        else:
            metadata = obj.get("metadata") or {}
            nn = NamespacedName(metadata.get("namespace", ""), metadata.get("name", ""))
            entry = self._entries.get((ident.logical_name, nn))
        if entry is None:
            raise NotStagedError(f"{ident} has no cached object to update")

        entry.obj = copy.deepcopy(obj)
        if entry.origin is not Origin.CREATED:
            entry.origin = Origin.TO_UPDATE

    def get(self, ident: ResourceIdent, nn: NamespacedName) -> dict[str, Any] | None:
        entry = self._entries.get((ident.logical_name, nn))
        return copy.deepcopy(entry.obj) if entry is not None else None

    def entries(self) -> list[CacheEntry]:
        return list(self._entries.values())

    def apply_all(self) -> None:
        """Write every staged object; raise the first failure after trying them all."""
        errors: list[Exception] = []
        for entry in self._entries.values():
            if entry.origin is Origin.FETCHED:
                continue
            operation = "create" if entry.origin is Origin.CREATED else "update"
            try:
                if entry.origin is Origin.CREATED:
                    self._cluster.create(entry.ident.kind, entry.obj)
                else:
                    self._cluster.update(entry.ident.kind, entry.obj)
            except Exception as e:
                self._log.error(
                    f"Failed to {operation} {entry.ident.kind.kind}: {e}",
                    ident=entry.ident.logical_name,
                    object_ref=str(entry.nn),
                    reason="ApplyFailed",
                )
                metrics.CACHE_APPLY_TOTAL.labels(operation=operation, result="error").inc()
                errors.append(e)
                continue
            metrics.CACHE_APPLY_TOTAL.labels(operation=operation, result="success").inc()
            self._log.info(
                f"Applied {entry.ident.kind.kind}",
                ident=entry.ident.logical_name,
                object_ref=str(entry.nn),
                operation=operation,
            )
        if errors:
            raise errors[0]
