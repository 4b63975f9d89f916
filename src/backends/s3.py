#!/usr/bin/env python3
"""
S3 Cache Backend — Mount Archives as Bucket Objects

Stores each mount point as one tar object in an S3 (or S3-compatible)
bucket. Configured from a JSON blob (the PLUGIN_S3 slot):

    {"bucket": "ci-cache", "region": "eu-west-1",
     "access_key": "...", "secret_key": "...", "acl": "private"}

Object key = remote path without its leading slash.
"""

import logging
import tempfile
import time
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from jsonschema import Draft7Validator

from cache.archive import restore_archive, spooled_archive
from cache.errors import (
    BackendConstructionError, FetchError, NotFoundError, ReleaseError, StoreError,
)

from .schema import parse_config

logger = logging.getLogger(__name__)

S3_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["bucket"],
    "properties": {
        "bucket": {"type": "string", "minLength": 1},
        "region": {"type": "string"},
        "endpoint": {"type": "string"},
        "access_key": {"type": "string"},
        "secret_key": {"type": "string"},
        "session_token": {"type": "string"},
        "acl": {"type": "string"},
        "path_style": {"type": "boolean"},
        "connect_timeout": {"type": "number", "exclusiveMinimum": 0},
        "read_timeout": {"type": "number", "exclusiveMinimum": 0},
        "max_attempts": {"type": "integer", "minimum": 1},
    },
    "dependencies": {
        "access_key": ["secret_key"],
        "secret_key": ["access_key"],
    },
    "additionalProperties": False,
}

_validator = Draft7Validator(S3_SCHEMA)

MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def object_key(remote_path: str) -> str:
    return remote_path.lstrip("/")


class S3Backend:
    name = "s3"

    def __init__(self, bucket: str, client, acl: Optional[str] = None):
        self.bucket = bucket
        self.acl = acl or None
        self._client = client
        logger.info(f"S3Backend initialized (bucket={bucket}, acl={self.acl or 'default'})")

    @classmethod
    def from_json(cls, blob: str) -> "S3Backend":
        """Build a backend from its configuration blob."""
        data = parse_config(blob, backend=cls.name, validator=_validator)

        my_config = Config(
            s3={"addressing_style": "path" if data.get("path_style") else "auto"},
            retries={"max_attempts": data.get("max_attempts", 3)},
            connect_timeout=data.get("connect_timeout", 60),
            read_timeout=data.get("read_timeout", 60),
        )
        kwargs: Dict[str, Any] = {"config": my_config}
        if data.get("region"):
            kwargs["region_name"] = data["region"]
        if data.get("endpoint"):
            kwargs["endpoint_url"] = data["endpoint"]
        if data.get("access_key"):
            kwargs["aws_access_key_id"] = data["access_key"]
            kwargs["aws_secret_access_key"] = data["secret_key"]
        if data.get("session_token"):
            kwargs["aws_session_token"] = data["session_token"]

        try:
            client = boto3.client("s3", **kwargs)
        except (BotoCoreError, ValueError) as e:
            raise BackendConstructionError(cls.name, f"cannot create S3 client: {e}") from e

        return cls(data["bucket"], client, acl=data.get("acl"))

    def store(self, remote_path: str, local_path: str) -> None:
        """Archive local_path and upload it as the object for remote_path."""
        key = object_key(remote_path)
        extra_args = {"ACL": self.acl} if self.acl else None

        start = time.time()
        with spooled_archive(local_path, remote_path) as archive:
            try:
                self._client.upload_fileobj(archive, self.bucket, key, ExtraArgs=extra_args)
            except (ClientError, BotoCoreError) as e:
                raise StoreError(remote_path, local_path, str(e)) from e

        logger.info(
            f"[S3] stored s3://{self.bucket}/{key} "
            f"({(time.time() - start) * 1000:.0f}ms)"
        )

    def fetch(self, remote_path: str, local_path: str) -> None:
        """Download the object for remote_path and unpack it into local_path."""
        key = object_key(remote_path)

        start = time.time()
        with tempfile.TemporaryFile(prefix="mount-cache-", suffix=".tar") as tmp:
            try:
                self._client.download_fileobj(self.bucket, key, tmp)
            except ClientError as e:
                code = str(e.response.get("Error", {}).get("Code", ""))
                if code in MISSING_CODES:
                    raise NotFoundError(
                        remote_path, local_path, f"no object s3://{self.bucket}/{key}"
                    ) from e
                raise FetchError(remote_path, local_path, str(e)) from e
            except BotoCoreError as e:
                raise FetchError(remote_path, local_path, str(e)) from e
            count = restore_archive(tmp, local_path, remote_path)

        logger.info(
            f"[S3] restored {count} entries from s3://{self.bucket}/{key} "
            f"({(time.time() - start) * 1000:.0f}ms)"
        )

    def release(self) -> None:
        """Close the underlying HTTP connection pool."""
        try:
            self._client.close()
        except (BotoCoreError, OSError) as e:
            raise ReleaseError(self.name, str(e)) from e
        logger.info("S3 client closed")

    def __repr__(self) -> str:
        return f"S3Backend(bucket={self.bucket})"
