"""Exception taxonomy for the edge synchronization core.

- Transient network faults: CentralUnavailableError (classified as offline, retried)
- Protocol/security faults: EnvelopeError, SyncTransmissionError
- Storage faults: LocalStoreError
- Configuration/startup faults: StartupError and subclasses (fatal)
"""


class EdgeSyncError(Exception):
    """Base class for all edge-sync errors."""


class LocalStoreError(EdgeSyncError):
    """A read or write against the local store failed."""


class CentralUnavailableError(EdgeSyncError):
    """The central system could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncTransmissionError(EdgeSyncError):
    """The central system answered but refused the batch."""


class EnvelopeError(EdgeSyncError):
    """A sync package could not be built."""


class StartupError(EdgeSyncError):
    """Base class for fatal lifecycle errors."""


class ServiceRegistrationError(StartupError):
    """A service with the same name is already registered."""


class MissingDependencyError(StartupError):
    """A declared dependency was never registered."""


class CircularDependencyError(StartupError):
    """The dependency graph contains a cycle."""


class ServiceInitializationError(StartupError):
    """A service failed to initialize."""

    def __init__(self, service_name: str, cause: BaseException) -> None:
        super().__init__(f"Failed to initialize service {service_name}: {cause}")
        self.service_name = service_name
