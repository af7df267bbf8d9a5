import boto3
import re
import uuid
from io import BytesIO
from datetime import datetime
from typing import Iterator, Optional, Tuple
from botocore.exceptions import ClientError
from thumbnail_server.settings import settings
from thumbnail_server.exceptions import BlobNotFoundException
import logging

log = logging.getLogger(__name__)

_REF_PATTERN = re.compile(r"^[0-9a-f]{32}$")
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}

# -------------------------
# S3 Blob Store
# -------------------------
class S3BlobStore:
    def __init__(self, bucket: Optional[str] = None, prefix: Optional[str] = None):
        self.bucket = bucket or settings.s3_bucket
        self.prefix = settings.s3_prefix if prefix is None else prefix

        session = boto3.session.Session(region_name=settings.aws_region)
        kwargs = {
            "aws_access_key_id": settings.aws_access_key_id,
            "aws_secret_access_key": settings.aws_secret_access_key,
        }
        if settings.aws_endpoint_url:
            kwargs["endpoint_url"] = settings.aws_endpoint_url

        self.client = session.client("s3", **kwargs)
        log.info("Initialized S3 client")

        # Ensure bucket exists at initialization
        self.ensure_bucket()

    def ensure_bucket(self):
        try:
            self.client.head_bucket(Bucket=self.bucket)
            log.debug("Bucket %s already exists", self.bucket)
        except ClientError as e:
            error_code = int(e.response["Error"]["Code"])
            if error_code == 404:
                self.client.create_bucket(Bucket=self.bucket)
                log.info("Created bucket %s", self.bucket)
            else:
                log.error("Failed to check/create bucket: %s", e)
                raise

    def _key_for(self, ref: str) -> str:
        if not isinstance(ref, str) or not _REF_PATTERN.match(ref):
            raise BlobNotFoundException(ref)
        return f"{self.prefix}{ref}"

    def put_blob(self, data: bytes, content_type: str = "application/octet-stream") -> str:
        # PutObject is all-or-nothing; a reader never sees a partial object
        ref = uuid.uuid4().hex
        key = self._key_for(ref)
        self.client.upload_fileobj(
            Fileobj=BytesIO(data),
            Bucket=self.bucket,
            Key=key,
            ExtraArgs={"ContentType": content_type},
        )
        log.debug("Uploaded %s to s3://%s/%s", ref, self.bucket, key)
        return ref

    def get_blob(self, ref: str) -> bytes:
        key = self._key_for(ref)
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if str(e.response["Error"]["Code"]) in _MISSING_CODES:
                raise BlobNotFoundException(ref)
            raise
        return resp["Body"].read()

    def delete_blob(self, ref: str):
        key = self._key_for(ref)
        self.client.delete_object(Bucket=self.bucket, Key=key)
        log.debug("Deleted s3://%s/%s", self.bucket, key)

    def iter_blobs(self) -> Iterator[Tuple[str, datetime]]:
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
            for obj in page.get("Contents", []):
                ref = obj["Key"][len(self.prefix):]
                if _REF_PATTERN.match(ref):
                    yield ref, obj["LastModified"]

    def reclaim_partial(self, older_than: datetime) -> int:
        """Aborts multipart uploads under the prefix that never completed."""
        aborted = 0
        paginator = self.client.get_paginator("list_multipart_uploads")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
            for upload in page.get("Uploads", []):
                if upload["Initiated"] > older_than:
                    continue
                self.client.abort_multipart_upload(
                    Bucket=self.bucket, Key=upload["Key"], UploadId=upload["UploadId"]
                )
                aborted += 1
                log.debug("Aborted stale upload %s for s3://%s/%s", upload["UploadId"], self.bucket, upload["Key"])
        return aborted

    def close(self):
        log.info("Closed S3 client")
