from typing import List
import logging

from sqlalchemy.exc import SQLAlchemyError
from botocore.exceptions import BotoCoreError, ClientError

from thumbnail_server.exceptions import BlobNotFoundException, ImageNotFoundException, StorageException
from thumbnail_server.image_service.models import ImageRecord
from thumbnail_server.image_service.tags import normalize_tag

log = logging.getLogger(__name__)

class RetrievalService:
    """Read-only access to committed image records and their blobs."""

    def __init__(self, blob_store, metadata_store):
        self.blob_store = blob_store
        self.metadata_store = metadata_store

    def get_record(self, image_id: int) -> ImageRecord:
        """Gets an image record by id."""
        try:
            record = self.metadata_store.get_record(image_id)
        except SQLAlchemyError as e:
            log.error(f"Metadata get_record failed: {e}")
            raise StorageException(f"Failed to get image metadata: {e}")
        if record is None:
            raise ImageNotFoundException(image_id)
        return record

    def get_original_bytes(self, image_id: int) -> bytes:
        return self.read_original(self.get_record(image_id))

    def get_thumbnail_bytes(self, image_id: int) -> bytes:
        return self.read_thumbnail(self.get_record(image_id))

    def read_original(self, record: ImageRecord) -> bytes:
        """Original bytes of a record the caller already holds."""
        return self._read_blob(record, record.original_blob_ref)

    def read_thumbnail(self, record: ImageRecord) -> bytes:
        return self._read_blob(record, record.thumb_blob_ref)

    def list_all(self) -> List[ImageRecord]:
        """All records ordered by creation time, then id."""
        try:
            return self.metadata_store.list_records()
        except SQLAlchemyError as e:
            log.error(f"Metadata list_records failed: {e}")
            raise StorageException(f"Failed to list images: {e}")

    def search_by_tag(self, tag: str) -> List[ImageRecord]:
        """Records carrying ``tag`` after normalization; empty when none match."""
        normalized = normalize_tag(tag or "")
        if not normalized:
            return []
        try:
            return self.metadata_store.search_by_tag(normalized)
        except SQLAlchemyError as e:
            log.error(f"Metadata search_by_tag failed: {e}")
            raise StorageException(f"Failed to search images: {e}")

    def _read_blob(self, record: ImageRecord, ref: str) -> bytes:
        try:
            return self.blob_store.get_blob(ref)
        except BlobNotFoundException:
            # a committed record always has both blobs
            log.error("Image %s references missing blob %s", record.id, ref)
            raise StorageException(f"Stored data for image '{record.id}' is unavailable")
        except (OSError, BotoCoreError, ClientError) as e:
            log.error(f"Blob read failed for {ref}: {e}")
            raise StorageException(f"Failed to read image data: {e}")
