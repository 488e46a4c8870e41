"""S3 blob storage client.

Provides existence checks, streamed multipart uploads, deletes and
presigned GET URLs using boto3 against AWS S3 (or an S3-compatible
endpoint when S3_ENDPOINT_URL is set).
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hearing_ingest.utils.errors import StorageError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def build_object_key(
    region: str, source_branch: str, scheduled_date: datetime | None, slug: str
) -> str:
    """Deterministic key: videos/<region>/<branch>/<YYYY>/<MM>/<slug>.mp4.

    Items without a date are filed under "undated".
    """
    if scheduled_date is None:
        return f"videos/{region}/{source_branch}/undated/{slug}.mp4"
    return (
        f"videos/{region}/{source_branch}/"
        f"{scheduled_date:%Y}/{scheduled_date:%m}/{slug}.mp4"
    )


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "Unknown"))


class MultipartUpload:
    """One in-progress multipart upload. Parts are uploaded in order."""

    def __init__(self, client, bucket: str, key: str, upload_id: str) -> None:
        self._client = client
        self.bucket = bucket
        self.key = key
        self.upload_id = upload_id
        self.parts: list[dict] = []
        self.bytes_uploaded = 0

    def upload_part(self, data: bytes) -> None:
        """Upload the next part (blocking; run it in a worker thread).

        Raises:
            StorageError: If S3 rejects the part.
        """
        part_number = len(self.parts) + 1
        try:
            response = self._client.upload_part(
                Bucket=self.bucket,
                Key=self.key,
                UploadId=self.upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except ClientError as exc:
            raise StorageError(
                f"Failed to upload part {part_number} of '{self.key}': {_error_code(exc)}",
                operation="upload_part",
            ) from exc
        except BotoCoreError as exc:
            raise StorageError(
                f"Failed to upload part {part_number} of '{self.key}': {exc}",
                operation="upload_part",
            ) from exc
        self.parts.append({"ETag": response["ETag"], "PartNumber": part_number})
        self.bytes_uploaded += len(data)

    def complete(self) -> None:
        try:
            self._client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=self.key,
                UploadId=self.upload_id,
                MultipartUpload={"Parts": self.parts},
            )
        except ClientError as exc:
            raise StorageError(
                f"Failed to complete upload of '{self.key}': {_error_code(exc)}",
                operation="complete_multipart_upload",
            ) from exc
        except BotoCoreError as exc:
            raise StorageError(
                f"Failed to complete upload of '{self.key}': {exc}",
                operation="complete_multipart_upload",
            ) from exc
        logger.info(
            "Completed multipart upload of %s (%d parts, %d bytes)",
            self.key,
            len(self.parts),
            self.bytes_uploaded,
        )

    def abort(self) -> None:
        """Abort the upload so S3 discards uploaded parts. Never raises."""
        try:
            self._client.abort_multipart_upload(
                Bucket=self.bucket, Key=self.key, UploadId=self.upload_id
            )
        except (ClientError, BotoCoreError):
            logger.warning(
                "Failed to abort multipart upload of %s", self.key, exc_info=True
            )


class BlobClient:
    """S3 client for transferred media.

    Reads configuration from environment variables when not passed:
        S3_BUCKET, AWS_REGION, S3_ENDPOINT_URL (optional)
    Credentials come from the standard AWS credential chain.
    """

    def __init__(
        self,
        bucket: str | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self.bucket = bucket or os.environ.get("S3_BUCKET", "")
        self.region = region or os.environ.get("AWS_REGION", "")
        self.endpoint_url = endpoint_url or os.environ.get("S3_ENDPOINT_URL") or None

        if not self.bucket:
            raise StorageError("S3_BUCKET is required", operation="init")
        if not self.region:
            raise StorageError("AWS_REGION is required", operation="init")

        self._client = boto3.client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    def locator_for(self, key: str) -> str:
        """Public URL identifying the object at key."""
        quoted = quote(key, safe="/")
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{quoted}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quoted}"

    def key_from_locator(self, locator: str) -> str:
        """Inverse of locator_for().

        Raises:
            StorageError: If the locator does not point into this bucket.
        """
        base = self.locator_for("")
        if not locator.startswith(base) or len(locator) == len(base):
            raise StorageError(
                f"Locator '{locator}' does not belong to bucket '{self.bucket}'",
                operation="key_from_locator",
            )
        return unquote(locator[len(base):])

    def check_access(self) -> None:
        """Raise StorageError unless the bucket is reachable with our credentials."""
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"S3 bucket '{self.bucket}' is not accessible: {exc}",
                operation="head_bucket",
            ) from exc

    def object_exists(self, key: str) -> bool:
        """Return True if an object exists at key.

        Raises:
            StorageError: For any failure other than "not found".
        """
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            raise StorageError(
                f"Failed to check S3 object '{key}': {_error_code(exc)}",
                operation="head_object",
            ) from exc
        except BotoCoreError as exc:
            raise StorageError(
                f"Failed to check S3 object '{key}': {exc}",
                operation="head_object",
            ) from exc
        return True

    def start_multipart_upload(
        self, key: str, content_type: str = "video/mp4"
    ) -> MultipartUpload:
        try:
            response = self._client.create_multipart_upload(
                Bucket=self.bucket, Key=key, ContentType=content_type
            )
        except ClientError as exc:
            raise StorageError(
                f"Failed to start upload of '{key}': {_error_code(exc)}",
                operation="create_multipart_upload",
            ) from exc
        except BotoCoreError as exc:
            raise StorageError(
                f"Failed to start upload of '{key}': {exc}",
                operation="create_multipart_upload",
            ) from exc
        return MultipartUpload(self._client, self.bucket, key, response["UploadId"])

    def delete_object(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise StorageError(
                f"Failed to delete S3 object '{key}': {_error_code(exc)}",
                operation="delete_object",
            ) from exc
        except BotoCoreError as exc:
            raise StorageError(
                f"Failed to delete S3 object '{key}': {exc}",
                operation="delete_object",
            ) from exc

    def presigned_url(self, key: str, expires_in: int = 21600) -> str:
        """Time-limited GET URL the transcription provider can fetch.

        Args:
            key: Object key.
            expires_in: Validity in seconds (default 6 hours).
        """
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to presign S3 object '{key}': {exc}",
                operation="presigned_url",
            ) from exc
