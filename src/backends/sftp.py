#!/usr/bin/env python3
"""
SFTP Cache Backend — Mount Archives on an SSH Server

Stores each mount point as a single tar file on a remote SFTP server.
Configured from a JSON blob (the PLUGIN_SFTP slot):

    {"server": "cache.example.com:2222", "username": "ci",
     "key_path": "/run/secrets/cache_key"}

Security model:
- Key-based auth preferred; password auth allowed when no key is given
- Private key loaded from file, inline string, or default ~/.ssh locations
- Connect timeout on the SSH handshake
- Uploads go to "<path>.tmp" and are renamed into place

Usage:
    backend = SFTPBackend.from_json(blob)
    backend.store("/cache/acme/app/<key>", "./node_modules")
    backend.fetch("/cache/acme/app/<key>", "./node_modules")
    backend.release()
"""

import io
import logging
import os
import posixpath
import tempfile
import time
from typing import Any, Dict, Optional, Tuple

import paramiko
from jsonschema import Draft7Validator

from cache.archive import restore_archive, spooled_archive
from cache.errors import (
    BackendConstructionError, FetchError, NotFoundError, ReleaseError, StoreError,
)

from .schema import parse_config

logger = logging.getLogger(__name__)

SFTP_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["server", "username"],
    "properties": {
        "server": {"type": "string", "minLength": 1},
        "username": {"type": "string", "minLength": 1},
        "password": {"type": "string"},
        "key_path": {"type": "string"},
        "key": {"type": "string"},
        "port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "timeout": {"type": "number", "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}

_validator = Draft7Validator(SFTP_SCHEMA)


def split_server(server: str, default_port: int) -> Tuple[str, int]:
    """Split "host[:port]" into its parts."""
    host, sep, port = server.rpartition(":")
    if sep and port.isdigit() and host and not host.endswith(":"):
        return host.strip("[]"), int(port)
    return server.strip("[]"), default_port


class SFTPBackend:
    """
    SFTP-based cache backend.

    Auth priority:
    1. Explicit key_path
    2. Inline key content
    3. Password, if given
    4. Default ~/.ssh/id_ed25519 or ~/.ssh/id_rsa
    """

    name = "sftp"

    DEFAULT_TIMEOUT = 30
    DEFAULT_PORT = 22
    KEY_CLASSES = ("Ed25519Key", "RSAKey", "ECDSAKey")

    def __init__(
        self,
        server: str,
        username: str,
        password: str = None,
        key_path: str = None,
        key_content: str = None,
        port: int = None,
        timeout: float = None,
    ):
        self.host, self.port = split_server(server, port or self.DEFAULT_PORT)
        self.username = username
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._password = password or None
        self._client: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

        self._key = self._load_key(key_path, key_content)
        if self._key is None and self._password is None:
            raise BackendConstructionError(self.name, "no SSH key or password available")

        logger.info(
            f"SFTPBackend initialized (host={self.host}, user={self.username}, "
            f"port={self.port}, key={'loaded' if self._key else 'none'})"
        )

    @classmethod
    def from_json(cls, blob: str) -> "SFTPBackend":
        """Build and connect a backend from its configuration blob."""
        data = parse_config(blob, backend=cls.name, validator=_validator)
        backend = cls(
            server=data["server"],
            username=data["username"],
            password=data.get("password"),
            key_path=data.get("key_path"),
            key_content=data.get("key"),
            port=data.get("port"),
            timeout=data.get("timeout"),
        )
        backend.connect()
        return backend

    def _load_key(self, key_path: str = None, key_content: str = None):
        """Load SSH private key from file or string."""
        # Priority 1: Explicit path
        if key_path:
            if not os.path.isfile(key_path):
                raise BackendConstructionError(self.name, f"SSH key file not found: {key_path}")
            return self._read_key_file(key_path)

        # Priority 2: Inline content
        if key_content:
            return self._parse_key_string(key_content)

        # Priority 3: password auth needs no key
        if self._password:
            return None

        # Priority 4: Default key locations
        for default in ["~/.ssh/id_ed25519", "~/.ssh/id_rsa"]:
            expanded = os.path.expanduser(default)
            if os.path.isfile(expanded):
                return self._read_key_file(expanded)

        logger.warning("No SSH private key found")
        return None

    def _read_key_file(self, path: str):
        """Read a private key from file."""
        for class_name in self.KEY_CLASSES:
            key_class = getattr(paramiko, class_name)
            try:
                return key_class.from_private_key_file(path)
            except (paramiko.SSHException, ValueError):
                continue
            except OSError as e:
                raise BackendConstructionError(self.name, f"cannot read SSH key {path}: {e}") from e
        raise BackendConstructionError(self.name, f"could not parse SSH key: {path}")

    def _parse_key_string(self, content: str):
        """Parse a private key from string content."""
        key_file = io.StringIO(content)
        for class_name in self.KEY_CLASSES:
            key_class = getattr(paramiko, class_name)
            try:
                key_file.seek(0)
                return key_class.from_private_key(key_file)
            except (paramiko.SSHException, ValueError):
                continue
        raise BackendConstructionError(self.name, "could not parse SSH key from string")

    # ── Connection Management ────────────────────────────────────

    def connect(self) -> None:
        """Open the SSH connection and an SFTP session on it."""
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self._password,
                pkey=self._key,
                timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            self._sftp = client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            raise BackendConstructionError(
                self.name, f"SSH auth failed for {self.username}@{self.host}"
            ) from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise BackendConstructionError(
                self.name, f"SSH connection failed to {self.host}:{self.port}: {e}"
            ) from e

        self._client = client
        logger.info(f"SFTP connected to {self.username}@{self.host}:{self.port}")

    def release(self) -> None:
        """Close the SFTP session and the SSH connection."""
        try:
            if self._sftp is not None:
                self._sftp.close()
            if self._client is not None:
                self._client.close()
        except (paramiko.SSHException, OSError) as e:
            raise ReleaseError(self.name, str(e)) from e
        finally:
            self._sftp = None
            self._client = None
        logger.info("SFTP connection closed")

    @property
    def connected(self) -> bool:
        if self._client is None or self._sftp is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    # ── Cache Operations ─────────────────────────────────────────

    def store(self, remote_path: str, local_path: str) -> None:
        """Archive local_path and upload it to remote_path, replacing any entry."""
        if self._sftp is None:
            raise StoreError(remote_path, local_path, "SFTP session is not open")

        start = time.time()
        with spooled_archive(local_path, remote_path) as archive:
            tmp_path = remote_path + ".tmp"
            try:
                self._makedirs(posixpath.dirname(remote_path))
                attrs = self._sftp.putfo(archive, tmp_path)
                self._replace(tmp_path, remote_path)
            except (paramiko.SSHException, OSError) as e:
                self._discard(tmp_path)
                raise StoreError(remote_path, local_path, str(e)) from e

        size = getattr(attrs, "st_size", None)
        logger.info(
            f"[SFTP] stored {remote_path} ({size} bytes, "
            f"{(time.time() - start) * 1000:.0f}ms)"
        )

    def fetch(self, remote_path: str, local_path: str) -> None:
        """Download the archive at remote_path and unpack it into local_path."""
        if self._sftp is None:
            raise FetchError(remote_path, local_path, "SFTP session is not open")

        start = time.time()
        try:
            self._sftp.stat(remote_path)
        except FileNotFoundError as e:
            raise NotFoundError(remote_path, local_path, "no cache entry at remote path") from e
        except (paramiko.SSHException, OSError) as e:
            raise FetchError(remote_path, local_path, str(e)) from e

        with tempfile.TemporaryFile(prefix="mount-cache-", suffix=".tar") as tmp:
            try:
                self._sftp.getfo(remote_path, tmp)
            except (paramiko.SSHException, OSError) as e:
                raise FetchError(remote_path, local_path, str(e)) from e
            count = restore_archive(tmp, local_path, remote_path)

        logger.info(
            f"[SFTP] restored {count} entries from {remote_path} "
            f"({(time.time() - start) * 1000:.0f}ms)"
        )

    # ── Remote Filesystem Helpers ────────────────────────────────

    def _makedirs(self, remote_dir: str) -> None:
        """mkdir -p on the server."""
        if not remote_dir or remote_dir == "/":
            return
        current = "/" if remote_dir.startswith("/") else ""
        for part in remote_dir.strip("/").split("/"):
            current = posixpath.join(current, part) if current else part
            try:
                self._sftp.stat(current)
            except FileNotFoundError:
                self._sftp.mkdir(current)

    def _replace(self, src: str, dst: str) -> None:
        """
        Move src over dst.

        paramiko reports an unsupported posix-rename extension as an IOError
        without errno; any error carrying one (permission, missing file) is
        a real failure and is raised. Without posix-rename, dst is parked at
        "<dst>.old" until src is in place and put back if that rename fails.
        """
        try:
            self._sftp.posix_rename(src, dst)
            return
        except OSError as e:
            if e.errno is not None:
                raise
            logger.debug("posix-rename unsupported, falling back to rename via backup")

        backup = dst + ".old"
        self._discard(backup)
        try:
            self._sftp.rename(dst, backup)
            parked = True
        except FileNotFoundError:
            parked = False

        try:
            self._sftp.rename(src, dst)
        except (paramiko.SSHException, OSError):
            if parked:
                self._sftp.rename(backup, dst)
            raise

        if parked:
            self._discard(backup)

    def _discard(self, path: str) -> None:
        """Best-effort remove; leftovers are logged, not raised."""
        try:
            self._sftp.remove(path)
        except FileNotFoundError:
            pass
        except (paramiko.SSHException, OSError) as e:
            logger.debug(f"could not remove {path}: {e}")

    # ── Context Manager ──────────────────────────────────────────

    def __enter__(self):
        if not self.connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

    def __repr__(self) -> str:
        status = "connected" if self.connected else "disconnected"
        return f"SFTPBackend({self.username}@{self.host}:{self.port}, {status})"
