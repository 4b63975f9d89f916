"""
Mount Cache Core
Branch-aware cache keys, directory archiving and the backend contract
"""

from .contract import CacheBackend
from .errors import (
    CacheError, ConfigurationError, NoBackendConfigured, MultipleBackendsConfigured,
    BackendConstructionError, StoreError, MountNotFoundError,
    FetchError, NotFoundError, ArchiveError, ReleaseError,
)
from .key_generator import derive_key, remote_path

__all__ = [
    'CacheBackend',
    'CacheError', 'ConfigurationError', 'NoBackendConfigured', 'MultipleBackendsConfigured',
    'BackendConstructionError', 'StoreError', 'MountNotFoundError',
    'FetchError', 'NotFoundError', 'ArchiveError', 'ReleaseError',
    'derive_key', 'remote_path',
]
