from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict

class NewImage(BaseModel):
    """Fields written by the ingestion coordinator; the store assigns id and created_at."""
    original_filename: str
    content_type: str
    width: int
    height: int
    thumb_width: int
    thumb_height: int
    thumb_content_type: str
    size_bytes: int
    tags: List[str] = []
    original_blob_ref: str
    thumb_blob_ref: str

class ImageRecord(NewImage):
    model_config = ConfigDict(frozen=True)

    id: int
    created_at: datetime

class ImageItem(BaseModel):
    id: int
    original_filename: str
    content_type: str
    width: int
    height: int
    thumb_width: int
    thumb_height: int
    size_bytes: int
    tags: List[str]
    created_at: datetime

    @classmethod
    def from_record(cls, record: ImageRecord) -> "ImageItem":
        return cls(**record.model_dump(exclude={"original_blob_ref", "thumb_blob_ref", "thumb_content_type"}))

class ListImagesResponse(BaseModel):
    images: List[ImageItem]
    tag: Optional[str] = None
