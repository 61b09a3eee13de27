"""Exceptions raised by the UPH engine.

Only infrastructure failures are exceptions. Unusable records and aggregates
are rejected into the run's rejection and anomaly logs instead.
"""


class UphEngineError(Exception):
    """Base class for engine failures."""

    fatal = True


class RegistryUnavailable(UphEngineError):
    """An external registry (MO, operator) or the cycle feed could not be read."""

    def __init__(self, registry: str, cause: Exception | str):
        self.registry = registry
        self.cause = cause
        super().__init__(f"{registry} registry unavailable: {cause}")


class StorageWriteError(UphEngineError):
    """The staged snapshot could not be written to the result store."""


class PublishGateFailed(UphEngineError):
    """The staged result failed its expectation suite and was not published."""

    def __init__(self, failed: list[str]):
        self.failed = failed
        super().__init__(f"Publish gate failed: {'; '.join(failed)}")


class RecomputeInProgress(UphEngineError):
    """A recompute was requested while another one holds the lock."""

    fatal = False


class RecomputeCancelled(UphEngineError):
    """A recompute was cancelled between processing steps."""

    fatal = False


class UnknownJob(KeyError):
    """No job with the given handle was ever started."""
