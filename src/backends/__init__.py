"""
Storage Backends for the Mount Cache

Provides:
- SFTP backend (SFTPBackend) — tar files on an SSH server
- S3 backend (S3Backend) — tar objects in a bucket
- build_backend(name, blob) — construct a backend for a selected config slot
"""

import logging
from typing import Callable, Dict

from cache.contract import CacheBackend
from cache.errors import BackendConstructionError

from .s3 import S3Backend
from .sftp import SFTPBackend

logger = logging.getLogger(__name__)

BACKENDS: Dict[str, Callable[[str], CacheBackend]] = {
    "sftp": SFTPBackend.from_json,
    "s3": S3Backend.from_json,
}


def build_backend(name: str, blob: str) -> CacheBackend:
    """Deserialize the configuration blob of slot ``name`` into a live backend."""
    factory = BACKENDS.get(name)
    if factory is None:
        raise BackendConstructionError(name, "unknown backend kind")
    logger.info(f"Constructing {name} cache backend")
    return factory(blob)


__all__ = ['BACKENDS', 'build_backend', 'S3Backend', 'SFTPBackend']
