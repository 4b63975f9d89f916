"""Capability contract every storage backend satisfies."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """
    Persists and retrieves directory archives by remote path.

    Backends are plain classes that provide these three methods; they do
    not inherit from this protocol. Failures are reported with the
    exceptions in ``cache.errors``:

    - store: MountNotFoundError for an unusable local directory,
      StoreError for anything else. Overwrites an existing entry.
    - fetch: NotFoundError when nothing exists at remote_path,
      FetchError for anything else. Creates local_path if missing.
    - release: ReleaseError. Called once, at the end of the run.
    """

    name: str

    def store(self, remote_path: str, local_path: str) -> None: ...

    def fetch(self, remote_path: str, local_path: str) -> None: ...

    def release(self) -> None: ...
