"""Error taxonomy for job invocation reconciliation.

Every error carries ``retryable`` (whether the pass should be re-delivered) and
``reason`` (the event reason reported against the request).
"""

from __future__ import annotations


class InvocationError(Exception):
    """Base class for errors raised while reconciling a job invocation."""

    retryable = False
    reason = "ReconcileFailed"


class NotFoundTransient(InvocationError):
    """A dependency (owning app or environment) does not exist yet."""

    retryable = True
    reason = "DependencyMissing"


class NotReadyTransient(InvocationError):
    """A dependency exists but has not finished its own reconciliation."""

    retryable = True
    reason = "DependencyNotReady"


class DefinitionMissing(InvocationError):
    """A requested job name has no matching definition in the owning app."""

    reason = "JobNameMissing"


class MissingMarkerError(InvocationError):
    """A test invocation was requested without a marker selector."""

    reason = "TestMarkerMissing"


class UpstreamConfigMissingError(InvocationError):
    """A sibling app's config secret is absent or unreadable."""

    retryable = True
    reason = "AppConfigMissing"


class CacheConflict(InvocationError):
    """The cluster rejected a write because the object changed underneath us."""

    retryable = True
    reason = "WriteConflict"


class CacheContractError(InvocationError):
    """The object cache was used in a way it does not support."""

    reason = "CacheMisuse"


class CacheLookupError(CacheContractError):
    """Looking up an object for the cache failed."""

    pass


class NotStagedError(CacheContractError):
    """An update was requested for an object the cache is not tracking."""

    pass


class CardinalityError(CacheContractError):
    """A single-instance resource was staged under more than one name."""

    pass
