from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging

from thumbnail_server.storage.filesystem import FilesystemBlobStore
from thumbnail_server.storage.metadata import MetadataStore
from thumbnail_server.storage.s3 import S3BlobStore
from thumbnail_server.image_service.ingest import IngestionCoordinator, STORE_ERRORS
from thumbnail_server.image_service.retrieval import RetrievalService
from thumbnail_server.image_service.sweep import sweep_orphans
from thumbnail_server.settings import settings
from thumbnail_server.routers.image_service import router as image_router
from thumbnail_server.exceptions import add_exception_handlers

logging.basicConfig(level=settings.log_level)
log = logging.getLogger("thumbnail-server")

def create_blob_store():
    if settings.blob_backend == "s3":
        return S3BlobStore()
    if settings.blob_backend == "filesystem":
        return FilesystemBlobStore(settings.blob_dir)
    raise ValueError(f"Unknown BLOB_BACKEND '{settings.blob_backend}'")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
        Async context manager for FastAPI application lifecycle events.
        Initializes and closes the blob and metadata stores.
    """
    # Initialize resources
    app.state.blobs = create_blob_store()
    app.state.metadata = MetadataStore(settings.database_url)
    app.state.metadata.create_schema()
    app.state.ingestor = IngestionCoordinator(app.state.blobs, app.state.metadata)
    app.state.retrieval = RetrievalService(app.state.blobs, app.state.metadata)
    if settings.sweep_on_startup:
        try:
            sweep_orphans(app.state.blobs, app.state.metadata)
        except STORE_ERRORS as e:
            log.error("Startup orphan sweep failed, continuing without it: %s", e)
    yield
    # Cleanup resources
    app.state.blobs.close()
    app.state.metadata.close()

# Initialize App
app = FastAPI(
    title=settings.app_title,
    lifespan=lifespan,
    description="Image ingestion and thumbnail service",
)

# Add exception handlers
add_exception_handlers(app)

# CORS - Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add the routers
app.include_router(image_router)

# Check Health
@app.get("/")
def read_root():
    """
        Default end point
    """
    return "Thumbnail Server is running."

if __name__ == "__main__":
    uvicorn.run("thumbnail_server.main:app", host="0.0.0.0", port=8000, reload=True)
