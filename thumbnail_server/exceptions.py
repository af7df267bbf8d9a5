"""
    Exception taxonomy for the ingestion and retrieval engine, plus the
    FastAPI handlers that turn it into JSON responses.
"""
from enum import Enum

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
import logging

log = logging.getLogger(__name__)

class ImageServiceException(Exception):
    """Base class for engine exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)

class ImageNotFoundException(ImageServiceException):
    """Exception for when an image record is not found."""
    def __init__(self, image_id):
        self.image_id = image_id
        super().__init__(status_code=404, detail=f"Image with ID '{image_id}' not found.")

class InvalidInputException(ImageServiceException):
    """Malformed request shape (filename, tags, empty upload)."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class UploadInterruptedException(InvalidInputException):
    """The upload stream failed before it was fully read."""

class DecodeErrorReason(str, Enum):
    UNSUPPORTED = "unsupported"
    MALFORMED = "malformed"
    TOO_LARGE = "too_large"

class DecodeException(ImageServiceException):
    """Unsupported or corrupt image data."""
    def __init__(self, detail: str, reason: DecodeErrorReason = DecodeErrorReason.MALFORMED):
        self.reason = reason
        super().__init__(status_code=400, detail=detail)

class ImageTooLargeException(DecodeException):
    """Decoded dimensions exceed the configured pixel cap."""
    def __init__(self, detail: str):
        super().__init__(detail, reason=DecodeErrorReason.TOO_LARGE)

class ResourceLimitExceededException(ImageServiceException):
    """Upload byte size or pixel count over policy."""
    def __init__(self, detail: str):
        super().__init__(status_code=413, detail=detail)

class StorageException(ImageServiceException):
    """Blob or metadata I/O failure."""
    def __init__(self, detail: str, orphaned: bool = False):
        self.orphaned = orphaned
        super().__init__(status_code=503, detail=detail)

class BlobNotFoundException(Exception):
    """Raised by blob stores for an unknown or malformed reference."""
    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Blob '{ref}' not found.")

async def image_service_exception_handler(request: Request, exc: ImageServiceException):
    """Handles engine exceptions."""
    if exc.status_code >= 500:
        log.error(f"Image service exception: {exc.detail}", exc_info=exc)
    else:
        log.info(f"Rejected request: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    """Handles FastAPI HTTP exceptions."""
    log.error(f"HTTP Exception: {exc.detail}", exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def generic_exception_handler(request: Request, exc: Exception):
    """Handles all other exceptions."""
    log.error(f"Unhandled Exception: {str(exc)}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred."},
    )

def add_exception_handlers(app):
    """Adds exception handlers to the FastAPI app."""
    app.add_exception_handler(ImageServiceException, image_service_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
