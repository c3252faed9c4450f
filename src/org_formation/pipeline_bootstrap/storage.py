"""S3 bucket utilities for the state bucket and the initial-commit upload."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .errors import UploadError

logger = logging.getLogger(__name__)

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}
_MISSING_KEY_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class ObjectRef:
    bucket: str
    key: str
    version_id: str | None = None

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def canonical_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":")) + "\n"


class S3Bucket:
    def __init__(self, client: Any, bucket: str, *, account_id: str | None = None) -> None:
        self.bucket = bucket
        self.account_id = account_id
        self._client = client

    def exists(self) -> bool:
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return True
        except ClientError as exc:
            if _error_code(exc) in _MISSING_BUCKET_CODES:
                return False
            raise

    def ensure(self, region: str, *, versioning: bool = True) -> bool:
        """Create the bucket pinned to `region` if missing. Returns True when created."""
        created = False
        try:
            if not self.exists():
                create_args: dict[str, Any] = {"Bucket": self.bucket}
                if region != "us-east-1":
                    create_args["CreateBucketConfiguration"] = {"LocationConstraint": region}
                try:
                    self._client.create_bucket(**create_args)
                    created = True
                    logger.info("PB: state bucket created bucket=%s region=%s", self.bucket, region)
                except ClientError as exc:
                    if _error_code(exc) != "BucketAlreadyOwnedByYou":
                        raise
            self._client.put_public_access_block(
                Bucket=self.bucket,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "IgnorePublicAcls": True,
                    "BlockPublicPolicy": True,
                    "RestrictPublicBuckets": True,
                },
            )
            self._client.put_bucket_encryption(
                Bucket=self.bucket,
                ServerSideEncryptionConfiguration={
                    "Rules": [{"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}]
                },
            )
            if versioning:
                self._client.put_bucket_versioning(
                    Bucket=self.bucket,
                    VersioningConfiguration={"Status": "Enabled"},
                )
        except (ClientError, BotoCoreError) as exc:
            raise UploadError(f"cannot provision bucket {self.bucket}: {exc}", account_id=self.account_id) from exc
        return created

    def put_bytes(self, key: str, body: bytes, *, content_type: str = "application/octet-stream") -> ObjectRef:
        try:
            response = self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            raise UploadError(f"cannot write s3://{self.bucket}/{key}: {exc}", account_id=self.account_id) from exc
        return ObjectRef(bucket=self.bucket, key=key, version_id=response.get("VersionId"))

    def write_json(self, key: str, payload: dict[str, Any]) -> ObjectRef:
        return self.put_bytes(key, canonical_json(payload).encode("utf-8"), content_type="application/json")

    def read_json(self, key: str) -> dict[str, Any] | None:
        """Return the decoded object, or None when the bucket or key is missing."""
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_KEY_CODES | _MISSING_BUCKET_CODES:
                return None
            raise
        body = response["Body"].read().decode("utf-8")
        return json.loads(body)

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise UploadError(f"cannot delete s3://{self.bucket}/{key}: {exc}", account_id=self.account_id) from exc
