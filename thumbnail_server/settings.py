from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List, Optional

class Settings(BaseSettings):
    app_title: str = Field("Thumbnail Server", env="APP_TITLE")
    log_level: str = Field("INFO", env="LOG_LEVEL")

    # Metadata store
    database_url: str = Field("sqlite:///./thumbnail_server.db", env="DATABASE_URL")

    # Blob store: "filesystem" or "s3"
    blob_backend: str = Field("filesystem", env="BLOB_BACKEND")
    blob_dir: str = Field("./blobs", env="BLOB_DIR")

    aws_region: str = Field("us-east-1", env="AWS_REGION")
    s3_bucket: str = Field("thumbnail-server-blobs", env="S3_BUCKET")
    s3_prefix: str = Field("blobs/", env="S3_PREFIX")
    aws_endpoint_url: Optional[str] = Field(None, env="AWS_ENDPOINT_URL")
    aws_access_key_id: str = Field("test", env="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str = Field("test", env="AWS_SECRET_ACCESS_KEY")

    # Thumbnails
    thumbnail_max_edge: int = Field(200, env="THUMBNAIL_MAX_EDGE")
    thumbnail_format: str = Field("PNG", env="THUMBNAIL_FORMAT")
    supported_formats: List[str] = Field(
        ["JPEG", "PNG", "GIF", "WEBP", "BMP", "TIFF"], env="SUPPORTED_FORMATS"
    )

    # Resource limits
    max_upload_bytes: int = Field(20 * 1024 * 1024, env="MAX_UPLOAD_BYTES")
    upload_chunk_size: int = Field(64 * 1024, env="UPLOAD_CHUNK_SIZE")
    max_image_pixels: int = Field(40_000_000, env="MAX_IMAGE_PIXELS")
    max_tags: int = Field(32, env="MAX_TAGS")
    max_tag_length: int = Field(64, env="MAX_TAG_LENGTH")

    # Orphan blob reclamation
    orphan_grace_seconds: int = Field(3600, env="ORPHAN_GRACE_SECONDS")
    sweep_on_startup: bool = Field(False, env="SWEEP_ON_STARTUP")

    class Config:
        env_file = ".env"
        extra = "allow"

settings = Settings()
