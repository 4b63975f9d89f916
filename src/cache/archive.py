#!/usr/bin/env python3
"""
Directory Archive Codec

Packs a mount point into an uncompressed tar stream and unpacks it again.
Backends only move opaque files around; everything they need to turn a
directory into bytes and back lives here.

Implements:
- pack_directory(src_dir, fileobj) → deterministic tar of the directory contents
- unpack_archive(fileobj, dest_dir) → extraction that refuses to escape dest_dir
- spooled_archive(local, remote) → temp file holding a packed mount
- restore_archive(fileobj, local, remote) → unpack with fetch-error translation
"""

import logging
import os
import tarfile
import tempfile
from contextlib import contextmanager
from typing import BinaryIO, Iterator, List

from .errors import ArchiveError, FetchError, MountNotFoundError, StoreError

logger = logging.getLogger(__name__)


def _norm_rel(path: str) -> str:
    path = path.replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def _iter_tree(root_dir: str) -> List[str]:
    """Relative paths of every directory, file and link below root_dir, sorted."""

    def _raise(err: OSError) -> None:
        raise err

    entries = []
    for cur_root, cur_dirs, cur_files in os.walk(root_dir, onerror=_raise):
        cur_dirs.sort()
        cur_files.sort()

        rel_root = os.path.relpath(cur_root, root_dir)
        rel_root = "" if rel_root == "." else rel_root

        for name in cur_dirs + cur_files:
            entries.append(_norm_rel(os.path.join(rel_root, name)))

    return sorted(set(entries))


def pack_directory(src_dir: str, fileobj: BinaryIO) -> int:
    """
    Write the contents of src_dir to fileobj as a tar stream.

    Member names are relative to src_dir (the directory itself is not a
    member). Symlinks are stored as links, not followed.

    Returns:
        Number of members written.
    """
    entries = _iter_tree(src_dir)
    with tarfile.open(fileobj=fileobj, mode="w|") as tf:
        for rel in entries:
            tf.add(os.path.join(src_dir, rel), arcname=rel, recursive=False)

    logger.debug(f"Packed {len(entries)} entries from {src_dir}")
    return len(entries)


def _is_within(base: str, target: str) -> bool:
    base = os.path.realpath(base)
    target = os.path.realpath(target)
    return os.path.commonpath([base, target]) == base


def _safe_members(tf: tarfile.TarFile, dest_dir: str) -> Iterator[tarfile.TarInfo]:
    for member in tf:
        name = member.name
        if os.path.isabs(name) or name.startswith(("/", "\\")):
            raise ArchiveError(f"absolute member path in archive: {name}")

        target = os.path.join(dest_dir, name)
        if not _is_within(dest_dir, target):
            raise ArchiveError(f"member escapes destination: {name}")

        if member.issym():
            if os.path.isabs(member.linkname):
                raise ArchiveError(f"absolute symlink in archive: {name} -> {member.linkname}")
            link_target = os.path.join(dest_dir, os.path.dirname(name), member.linkname)
            if not _is_within(dest_dir, link_target):
                raise ArchiveError(f"symlink escapes destination: {name} -> {member.linkname}")
        elif member.islnk():
            if not _is_within(dest_dir, os.path.join(dest_dir, member.linkname)):
                raise ArchiveError(f"hard link escapes destination: {name} -> {member.linkname}")
        elif member.isdev():
            logger.warning(f"Skipping device entry in archive: {name}")
            continue

        yield member


def unpack_archive(fileobj: BinaryIO, dest_dir: str) -> int:
    """
    Extract a tar stream produced by pack_directory into dest_dir.

    dest_dir is created if needed; existing files are overwritten.

    Returns:
        Number of members extracted.
    """
    os.makedirs(dest_dir, exist_ok=True)

    with tarfile.open(fileobj=fileobj, mode="r:") as tf:
        members = list(_safe_members(tf, dest_dir))
        # Interpreters with extraction filters warn (3.12+) or change
        # defaults (3.14) unless one is named.
        if hasattr(tarfile, "tar_filter"):
            tf.extractall(dest_dir, members=members, filter="tar")
        else:
            tf.extractall(dest_dir, members=members)

    logger.debug(f"Unpacked {len(members)} entries into {dest_dir}")
    return len(members)


# ── Backend Helpers ──────────────────────────────────────────

def check_mount(local_path: str, remote_path: str) -> None:
    """Raise MountNotFoundError unless local_path is a readable directory."""
    if not os.path.exists(local_path):
        raise MountNotFoundError(remote_path, local_path, "local path does not exist")
    if not os.path.isdir(local_path):
        raise MountNotFoundError(remote_path, local_path, "local path is not a directory")
    if not os.access(local_path, os.R_OK | os.X_OK):
        raise MountNotFoundError(remote_path, local_path, "local path is not readable")


@contextmanager
def spooled_archive(local_path: str, remote_path: str) -> Iterator[BinaryIO]:
    """
    Pack local_path into a temporary file and yield it rewound.

    Usage:
        with spooled_archive(mount, remote) as archive:
            client.upload(archive, remote)
    """
    check_mount(local_path, remote_path)

    with tempfile.TemporaryFile(prefix="mount-cache-", suffix=".tar") as tmp:
        try:
            pack_directory(local_path, tmp)
        except (OSError, tarfile.TarError) as e:
            raise StoreError(remote_path, local_path, f"archiving failed: {e}") from e
        tmp.seek(0)
        yield tmp


def restore_archive(fileobj: BinaryIO, local_path: str, remote_path: str) -> int:
    """Unpack a downloaded archive, reporting failures as FetchError."""
    fileobj.seek(0)
    try:
        return unpack_archive(fileobj, local_path)
    except ArchiveError as e:
        raise FetchError(remote_path, local_path, str(e)) from e
    except (OSError, tarfile.TarError) as e:
        raise FetchError(remote_path, local_path, f"unarchiving failed: {e}") from e
