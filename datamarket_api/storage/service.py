"""Measurement object store behind the storage service.

Uses MinIO (S3-compatible). Object keys are derived from the measurement hash
only, so request input never reaches a filesystem path.
"""

import logging
import re
from io import BytesIO
from typing import Optional

from minio import Minio
from minio.error import S3Error

from datamarket_api.errors import MeasurementNotFound, StorageUnavailable
from datamarket_api.settings import get_settings

logger = logging.getLogger(__name__)

_HASH_PATTERN = re.compile(r"^[0-9a-f]{1,128}$")


class MeasurementStore:
    """Plaintext measurements served to authenticated buyers."""

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None):
        settings = get_settings()
        self.bucket = bucket or settings.minio_bucket
        self.client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_use_ssl,
        )
        self._bucket_checked = False

    def _ensure_bucket(self):
        if self._bucket_checked:
            return
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info(f"Created bucket: {self.bucket}")
        except S3Error as e:
            logger.error(f"Failed to ensure bucket {self.bucket}: {e}")
            raise StorageUnavailable("Measurement store unavailable") from e
        self._bucket_checked = True

    @staticmethod
    def build_object_key(measurement_hash: str) -> str:
        """
        Build object key for a measurement.

        Format: measurements/{hash}

        Raises:
            ValueError: If the hash is not lowercase hex
        """
        normalized = measurement_hash.lower()
        if normalized.startswith("0x"):
            normalized = normalized[2:]
        if not _HASH_PATTERN.match(normalized):
            raise ValueError(f"Invalid measurement hash: {measurement_hash}")
        return f"measurements/{normalized}"

    def put_measurement(self, measurement_hash: str, measurement: str) -> str:
        self._ensure_bucket()
        object_key = self.build_object_key(measurement_hash)
        data = measurement.encode("utf-8")
        try:
            self.client.put_object(
                self.bucket,
                object_key,
                BytesIO(data),
                length=len(data),
                content_type="text/plain; charset=utf-8",
            )
        except S3Error as e:
            logger.error(f"Failed to upload object {object_key}: {e}")
            raise StorageUnavailable("Measurement store unavailable") from e
        logger.debug(f"Uploaded object: {object_key} ({len(data)} bytes)")
        return object_key

    def get_measurement(self, measurement_hash: str) -> str:
        """
        Retrieve a measurement.

        Raises:
            MeasurementNotFound: If no object exists for the hash
            StorageUnavailable: If MinIO fails
        """
        self._ensure_bucket()
        object_key = self.build_object_key(measurement_hash)
        try:
            response = self.client.get_object(self.bucket, object_key)
            try:
                data = response.read()
            finally:
                response.close()
                response.release_conn()
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise MeasurementNotFound(f"Measurement not found: {measurement_hash}") from e
            logger.error(f"Failed to retrieve object {object_key}: {e}")
            raise StorageUnavailable("Measurement store unavailable") from e
        return data.decode("utf-8")


_measurement_store: Optional[MeasurementStore] = None


def get_measurement_store() -> MeasurementStore:
    """Get or create measurement store instance."""
    global _measurement_store
    if _measurement_store is None:
        _measurement_store = MeasurementStore()
    return _measurement_store
