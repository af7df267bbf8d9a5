"""
    Ingestion coordinator: the only writer in the system.

    One call to ``ingest`` walks a single upload through
    RECEIVED -> VALIDATED -> DECODED -> THUMBNAIL_READY -> COMMITTED,
    or stops at FAILED. Blobs are written before the metadata row, and the
    row (with its tags) is committed in one transaction, so a record is
    visible to readers only once everything it references exists.
"""
from enum import Enum
from typing import Iterable, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from botocore.exceptions import BotoCoreError, ClientError

from thumbnail_server.exceptions import (
    DecodeErrorReason,
    DecodeException,
    ImageServiceException,
    InvalidInputException,
    ResourceLimitExceededException,
    StorageException,
    UploadInterruptedException,
)
from thumbnail_server.image_service import thumbnail as thumbnails
from thumbnail_server.image_service.models import ImageRecord, NewImage
from thumbnail_server.image_service.tags import has_control_chars, normalize_tags
from thumbnail_server.settings import settings

log = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 255

# errors a blob or metadata backend may raise for an I/O failure
STORE_ERRORS = (OSError, SQLAlchemyError, BotoCoreError, ClientError)

class IngestState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    DECODED = "decoded"
    THUMBNAIL_READY = "thumbnail_ready"
    COMMITTED = "committed"
    FAILED = "failed"

def read_bounded(stream, limit: int, chunk_size: int) -> bytes:
    """
        Reads ``stream`` in chunks, refusing to buffer more than ``limit`` bytes.

        Raises ResourceLimitExceededException as soon as the limit is crossed
        and UploadInterruptedException if the stream itself fails.
    """
    chunks: List[bytes] = []
    total = 0
    while True:
        try:
            chunk = stream.read(chunk_size)
        except Exception as e:
            raise UploadInterruptedException(f"Upload stream interrupted: {e}")
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise ResourceLimitExceededException(f"Upload exceeds the {limit} byte limit")
        chunks.append(chunk)
    return b"".join(chunks)

def validate_filename(filename: Optional[str]) -> str:
    if filename is None or not filename.strip():
        raise InvalidInputException("Filename is required")
    if len(filename) > MAX_FILENAME_LENGTH:
        raise InvalidInputException(f"Filename longer than {MAX_FILENAME_LENGTH} characters")
    if has_control_chars(filename):
        raise InvalidInputException("Filename contains control characters")
    return filename

def validate_tags(tags: Optional[Iterable[str]], max_tags: int, max_tag_length: int) -> List[str]:
    raw = list(tags or [])
    for tag in raw:
        if not isinstance(tag, str):
            raise InvalidInputException("Tags must be strings")
        if has_control_chars(tag):
            raise InvalidInputException("Tags may not contain control characters")
    normalized = normalize_tags(raw)
    if len(normalized) > max_tags:
        raise InvalidInputException(f"At most {max_tags} tags are allowed")
    for tag in normalized:
        if len(tag) > max_tag_length:
            raise InvalidInputException(f"Tag '{tag[:16]}...' is longer than {max_tag_length} characters")
    return normalized


class IngestionCoordinator:
    def __init__(
        self,
        blob_store,
        metadata_store,
        max_upload_bytes: Optional[int] = None,
        chunk_size: Optional[int] = None,
        max_edge: Optional[int] = None,
        max_pixels: Optional[int] = None,
        thumbnail_format: Optional[str] = None,
        supported_formats: Optional[Iterable[str]] = None,
        max_tags: Optional[int] = None,
        max_tag_length: Optional[int] = None,
    ):
        self.blob_store = blob_store
        self.metadata_store = metadata_store
        self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes
        self.chunk_size = chunk_size or settings.upload_chunk_size
        self.max_edge = max_edge or settings.thumbnail_max_edge
        self.max_pixels = max_pixels or settings.max_image_pixels
        self.thumbnail_format = thumbnail_format or settings.thumbnail_format
        self.supported_formats = list(supported_formats or settings.supported_formats)
        self.max_tags = max_tags or settings.max_tags
        self.max_tag_length = max_tag_length or settings.max_tag_length

    def _transition(self, filename, state: IngestState):
        log.debug("Ingest %r -> %s", filename, state.value)

    def ingest(self, filename: str, stream, tags: Optional[Iterable[str]] = None) -> ImageRecord:
        """Runs one upload through the pipeline and returns the committed record."""
        self._transition(filename, IngestState.RECEIVED)
        try:
            record = self._run(filename, stream, tags)
        except ImageServiceException as e:
            self._transition(filename, IngestState.FAILED)
            log.warning("Ingest of %r failed: %s", filename, e.detail)
            raise
        self._transition(filename, IngestState.COMMITTED)
        log.info("Saved image %s (%r, %dx%d)", record.id, record.original_filename, record.width, record.height)
        return record

    def _run(self, filename, stream, tags) -> ImageRecord:
        filename = validate_filename(filename)
        normalized_tags = validate_tags(tags, self.max_tags, self.max_tag_length)
        data = read_bounded(stream, self.max_upload_bytes, self.chunk_size)
        if not data:
            raise InvalidInputException("Uploaded file is empty")
        self._transition(filename, IngestState.VALIDATED)

        try:
            img = thumbnails.decode(data, formats=self.supported_formats, max_pixels=self.max_pixels)
        except DecodeException as e:
            if e.reason == DecodeErrorReason.TOO_LARGE:
                raise ResourceLimitExceededException(e.detail)
            raise
        self._transition(filename, IngestState.DECODED)

        try:
            thumb = thumbnails.render(img, max_edge=self.max_edge, output_format=self.thumbnail_format)
        finally:
            img.close()
        self._transition(filename, IngestState.THUMBNAIL_READY)

        return self._persist(filename, data, thumb, normalized_tags)

    def _persist(self, filename, data: bytes, thumb: thumbnails.Thumbnail, tags: List[str]) -> ImageRecord:
        written: List[str] = []
        try:
            written.append(self.blob_store.put_blob(data, thumb.source_content_type))
            written.append(self.blob_store.put_blob(thumb.data, thumb.content_type))
        except STORE_ERRORS as e:
            log.error("Blob write failed for %r: %s", filename, e)
            orphaned = self._discard(written)
            raise StorageException(f"Failed to store image data: {e}", orphaned=orphaned)

        original_ref, thumb_ref = written
        try:
            return self.metadata_store.insert_record(NewImage(
                original_filename=filename,
                content_type=thumb.source_content_type,
                width=thumb.source_width,
                height=thumb.source_height,
                thumb_width=thumb.width,
                thumb_height=thumb.height,
                thumb_content_type=thumb.content_type,
                size_bytes=len(data),
                tags=tags,
                original_blob_ref=original_ref,
                thumb_blob_ref=thumb_ref,
            ))
        except STORE_ERRORS as e:
            log.error("Metadata insert failed for %r: %s", filename, e)
            orphaned = self._discard(written)
            raise StorageException(f"Failed to save image metadata: {e}", orphaned=orphaned)

    def _discard(self, refs: List[str]) -> bool:
        """Deletes blobs of an aborted ingestion; True if any may remain."""
        orphaned = False
        for ref in refs:
            try:
                self.blob_store.delete_blob(ref)
            except STORE_ERRORS as e:
                orphaned = True
                log.warning("Could not discard blob %s, leaving it for the sweep: %s", ref, e)
        return orphaned
