from __future__ import annotations

import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ValidationError, dependency
from .settings import settings


class LocalObjects:
    """Object store laid out as <root>/<bucket>/<key> on disk."""

    def __init__(self, root: str | None = None):
        self.root = os.path.abspath(root or settings.objects_root)

    def path(self, bucket: str, key: str) -> str:
        p = os.path.abspath(os.path.join(self.root, bucket, key))
        if not p.startswith(self.root + os.sep):
            raise ValidationError(f"Object key {key!r} escapes the store root.")
        return p

    def put(self, bucket: str, key: str, data: bytes) -> None:
        p = self.path(bucket, key)
        with dependency("object store", f"put {bucket}/{key}", OSError):
            os.makedirs(os.path.dirname(p), exist_ok=True)
            with open(p, "wb") as f:
                f.write(data)

    def delete(self, bucket: str, key: str) -> None:
        p = self.path(bucket, key)
        # Deleting a missing key succeeds, as it does on S3.
        if not os.path.exists(p):
            return
        with dependency("object store", f"delete {bucket}/{key}", OSError):
            os.remove(p)


class S3Objects:
    def __init__(self, client=None):
        if client is None:
            client = boto3.client("s3", region_name=settings.aws_region) if settings.aws_region else boto3.client("s3")
        self.client = client

    def put(self, bucket: str, key: str, data: bytes) -> None:
        with dependency("object store", f"put s3://{bucket}/{key}", ClientError, BotoCoreError):
            self.client.put_object(Bucket=bucket, Key=key, Body=data)

    def delete(self, bucket: str, key: str) -> None:
        with dependency("object store", f"delete s3://{bucket}/{key}", ClientError, BotoCoreError):
            self.client.delete_object(Bucket=bucket, Key=key)
