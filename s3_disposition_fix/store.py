"""
S3 object-store adapter.

replace_metadata() copies an object onto its own key with
MetadataDirective=REPLACE, which rewrites Content-Type and
Content-Disposition without touching the bytes. Running it twice with the
same inputs leaves the object in the same state, so a failed run can simply
be started again.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ObjectNotFound, RemediationError

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}


@dataclass(frozen=True)
class Credentials:
    access_key: Optional[str]
    secret_key: Optional[str]
    region: Optional[str] = None

    @property
    def masked_access_key(self) -> str:
        return f"{(self.access_key or '')[:8]}..."


class ObjectStore(Protocol):
    def replace_metadata(self, key: str, content_type: Optional[str], content_disposition: str) -> None: ...


def error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def build_s3_client(credentials: Credentials, max_pool_connections: int = 10):
    """One client is shared by every worker; size its pool to the worker count."""
    session_kwargs = {
        "aws_access_key_id": credentials.access_key,
        "aws_secret_access_key": credentials.secret_key,
    }
    if credentials.region:
        session_kwargs["region_name"] = credentials.region
    session = boto3.session.Session(**session_kwargs)
    return session.client(
        "s3",
        config=Config(
            retries={"max_attempts": 10, "mode": "standard"},
            max_pool_connections=max(10, max_pool_connections),
        ),
    )


class S3ObjectStore:
    def __init__(self, s3_client, bucket: str):
        self.s3 = s3_client
        self.bucket = bucket

    def replace_metadata(self, key: str, content_type: Optional[str], content_disposition: str) -> None:
        kwargs = {
            "Bucket": self.bucket,
            "Key": key,
            "CopySource": {"Bucket": self.bucket, "Key": key},
            "ContentDisposition": content_disposition,
            "MetadataDirective": "REPLACE",
        }
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.s3.copy_object(**kwargs)
        except ClientError as e:
            code = error_code(e)
            if code in NOT_FOUND_CODES:
                raise ObjectNotFound(key) from e
            raise RemediationError(key, f"{code or 'ClientError'}: {e}") from e
        except BotoCoreError as e:
            raise RemediationError(key, f"{type(e).__name__}: {e}") from e

    def current_metadata(self, key: str) -> dict:
        try:
            resp = self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if error_code(e) in NOT_FOUND_CODES:
                raise ObjectNotFound(key) from e
            raise RemediationError(key, f"{error_code(e) or 'ClientError'}: {e}") from e
        except BotoCoreError as e:
            raise RemediationError(key, f"{type(e).__name__}: {e}") from e
        return {
            "ContentType": resp.get("ContentType"),
            "ContentDisposition": resp.get("ContentDisposition"),
        }
