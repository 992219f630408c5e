"""S3-compatible object storage client.

Fetches uploaded audio, stages audio for providers that need a reachable
URL, and signs time-limited GET URLs. Uses boto3 against any S3-compatible
endpoint.
"""

from __future__ import annotations

import logging
import os

import boto3
from botocore.exceptions import ClientError

from transcription_engine.utils.errors import AudioFetchError, StorageError

logger = logging.getLogger(__name__)


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


class ObjectStorageClient:
    """S3-compatible client for recording audio.

    Reads configuration from environment variables:
        OBJECT_STORAGE_ENDPOINT, OBJECT_STORAGE_BUCKET,
        OBJECT_STORAGE_ACCESS_KEY_ID, OBJECT_STORAGE_SECRET_ACCESS_KEY
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        bucket: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url or os.environ.get("OBJECT_STORAGE_ENDPOINT", "")
        self.bucket = bucket or os.environ.get("OBJECT_STORAGE_BUCKET", "")
        self.access_key_id = access_key_id or os.environ.get(
            "OBJECT_STORAGE_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "OBJECT_STORAGE_SECRET_ACCESS_KEY", ""
        )

        if not self.endpoint_url:
            raise StorageError("OBJECT_STORAGE_ENDPOINT is required", operation="init")
        if not self.bucket:
            raise StorageError("OBJECT_STORAGE_BUCKET is required", operation="init")

        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name="auto",
        )

    def fetch_object(self, key: str) -> bytes:
        """Retrieve an object by key.

        Raises:
            AudioFetchError: If the object cannot be retrieved.
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            raise AudioFetchError(
                f"Failed to fetch object '{key}': {_error_code(exc)}",
                key=key,
            ) from exc

    def put_object(self, key: str, data: bytes, content_type: str = "") -> None:
        """Store an object.

        Raises:
            StorageError: If the object cannot be stored.
        """
        try:
            kwargs: dict = {"Bucket": self.bucket, "Key": key, "Body": data}
            if content_type:
                kwargs["ContentType"] = content_type
            self._client.put_object(**kwargs)
        except ClientError as exc:
            raise StorageError(
                f"Failed to put object '{key}': {_error_code(exc)}",
                operation="put_object",
            ) from exc

    def delete_object(self, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error.

        Raises:
            StorageError: If the delete request fails.
        """
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise StorageError(
                f"Failed to delete object '{key}': {_error_code(exc)}",
                operation="delete_object",
            ) from exc

    def generate_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """Return a pre-signed GET URL valid for expires_in seconds.

        Raises:
            StorageError: If the URL cannot be signed.
        """
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except ClientError as exc:
            raise StorageError(
                f"Failed to sign URL for object '{key}': {_error_code(exc)}",
                operation="generate_signed_url",
            ) from exc
