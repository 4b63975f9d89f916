#!/usr/bin/env python3
"""
Cache Key Generation — Branch-Aware Mount Keys

Implements:
- derive_key(mount, branch) → deterministic 32-char hex key
- remote_path(prefix, repo, key) → full remote location of a cache entry
- Same mount + same branch = same key across runs (cache hit)
- Different mount or branch = different key (no aliasing between branches)
"""

import hashlib
import logging
import posixpath

logger = logging.getLogger(__name__)

KEY_LENGTH = 32


def derive_key(mount: str, branch: str) -> str:
    """
    Hash a mount path and branch into a cache key.

    The two strings are fed to MD5 as-is, mount first, with no separator and
    no normalisation: "./node_modules" and "node_modules/" are different
    mounts. Keys stay compatible with entries written by earlier releases,
    so the algorithm must not change.

    Returns:
        Lowercase hex digest (32 chars), safe as a path segment or URL part.
    """
    h = hashlib.md5()
    for part in (mount, branch):
        h.update(part.encode("utf-8"))
    key = h.hexdigest()

    logger.debug(f"Generated key: {key} (mount={mount}, branch={branch})")
    return key


def remote_path(prefix: str, repo: str, key: str) -> str:
    """
    Join prefix, repo and key into the remote location of an entry.

    Empty parts are skipped and redundant separators collapse, so
    ("/cache", "acme/app", k) and ("/cache/", "acme/app/", k) both give
    "/cache/acme/app/<k>". A leading slash on ``repo`` does not discard the
    prefix.
    """
    parts = [p for p in (prefix, repo, key) if p]
    if not parts:
        raise ValueError("remote path needs at least a key")
    return posixpath.normpath("/".join(parts))
