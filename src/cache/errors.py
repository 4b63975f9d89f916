"""Error taxonomy shared by the orchestrator and every backend."""

from __future__ import annotations

from typing import Optional


class CacheError(Exception):
    """Base class for every failure the cache plugin reports."""


class ConfigurationError(CacheError):
    """Plugin configuration is unusable; nothing has touched the network."""


class NoBackendConfigured(ConfigurationError):
    def __init__(self, message: str = "No configuration for cache backend found.") -> None:
        super().__init__(message)


class MultipleBackendsConfigured(ConfigurationError):
    def __init__(self, names=(), message: Optional[str] = None) -> None:
        self.names = tuple(names)
        if message is None:
            message = "You can only configure one cache backend."
            if self.names:
                message += f" Found: {', '.join(self.names)}"
        super().__init__(message)


class BackendConstructionError(CacheError):
    """The selected backend could not be deserialized or connected."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"[{backend}] {message}")


class _TransferError(CacheError):
    verb = "transfer"

    def __init__(self, remote_path: str, local_path: str, message: str) -> None:
        self.remote_path = remote_path
        self.local_path = local_path
        self.reason = message
        super().__init__(
            f"failed to {self.verb} <{local_path}> ({remote_path}): {message}"
        )


class StoreError(_TransferError):
    """Archive-and-upload of one mount point failed."""

    verb = "store"


class MountNotFoundError(StoreError):
    """The local directory to archive is missing, not a directory, or unreadable."""


class FetchError(_TransferError):
    """Download-and-materialize of one mount point failed."""

    verb = "fetch"


class NotFoundError(FetchError):
    """No cache entry exists at the remote path."""


class ArchiveError(CacheError):
    """A tar stream was malformed or tried to write outside its destination."""


class ReleaseError(CacheError):
    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"[{backend}] release failed: {message}")
