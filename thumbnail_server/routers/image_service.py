from fastapi import APIRouter, Depends, UploadFile, File, Form, Query, Response
from typing import Optional
import logging

from thumbnail_server.dependencies.dependencies import get_ingestion_coordinator, get_retrieval_service
from thumbnail_server.image_service.ingest import IngestionCoordinator
from thumbnail_server.image_service.retrieval import RetrievalService
from thumbnail_server.image_service.models import ImageItem, ListImagesResponse
from thumbnail_server.image_service.tags import split_tag_field

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/images",
    tags=["thumbnail-server"]
)

# Handlers are sync; FastAPI runs them on its thread pool.

@router.post("", response_model=ImageItem, status_code=201)
def upload_image(
    file: UploadFile = File(...),
    tags: Optional[str] = Form(None),  # Comma Separated Values
    ingestor: IngestionCoordinator = Depends(get_ingestion_coordinator),
):
    """Uploads an image; the thumbnail and metadata are derived server side."""
    record = ingestor.ingest(file.filename, file.file, split_tag_field(tags))
    return ImageItem.from_record(record)

@router.get("", response_model=ListImagesResponse)
def list_images_handler(
    tag: Optional[str] = Query(None),
    retrieval: RetrievalService = Depends(get_retrieval_service),
):
    """Lists every image, or only those carrying ``tag``."""
    if tag is not None:
        records = retrieval.search_by_tag(tag)
    else:
        records = retrieval.list_all()
    return ListImagesResponse(images=[ImageItem.from_record(r) for r in records], tag=tag)

@router.get("/{image_id}", response_model=ImageItem)
def get_image(
    image_id: int,
    retrieval: RetrievalService = Depends(get_retrieval_service),
):
    """Gets image metadata."""
    return ImageItem.from_record(retrieval.get_record(image_id))

@router.get("/{image_id}/original")
def get_original(
    image_id: int,
    retrieval: RetrievalService = Depends(get_retrieval_service),
):
    """Streams back the original upload."""
    record = retrieval.get_record(image_id)
    data = retrieval.read_original(record)
    return Response(
        content=data,
        media_type=record.content_type,
        headers={"X-Content-Type-Options": "nosniff"},
    )

@router.get("/{image_id}/thumbnail")
def get_thumbnail(
    image_id: int,
    retrieval: RetrievalService = Depends(get_retrieval_service),
):
    """Streams back the derived thumbnail."""
    record = retrieval.get_record(image_id)
    data = retrieval.read_thumbnail(record)
    return Response(
        content=data,
        media_type=record.thumb_content_type,
        headers={"X-Content-Type-Options": "nosniff"},
    )
