from datetime import datetime, timezone
from typing import List, Optional, Set
import logging

from sqlalchemy import create_engine, Column, Integer, String, DateTime, ForeignKey, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from thumbnail_server.image_service.models import ImageRecord, NewImage

log = logging.getLogger(__name__)

# ids live in a signed 64-bit INTEGER column
MAX_IMAGE_ID = 2**63 - 1

Base = declarative_base()


class ImageRow(Base):
    __tablename__ = "images"
    # AUTOINCREMENT keeps SQLite from handing out the id of a deleted row again
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    original_filename = Column(String(255), nullable=False)
    content_type = Column(String(100), nullable=False)
    width = Column(Integer, nullable=False)
    height = Column(Integer, nullable=False)
    thumb_width = Column(Integer, nullable=False)
    thumb_height = Column(Integer, nullable=False)
    thumb_content_type = Column(String(100), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    original_blob_ref = Column(String(64), nullable=False, unique=True)
    thumb_blob_ref = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    tags = relationship("ImageTagRow", back_populates="image", cascade="all, delete-orphan", lazy="selectin")


class ImageTagRow(Base):
    __tablename__ = "image_tags"

    image_id = Column(Integer, ForeignKey("images.id", ondelete="CASCADE"), primary_key=True)
    tag = Column(String(255), primary_key=True, index=True)

    image = relationship("ImageRow", back_populates="tags")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_record(row: ImageRow) -> ImageRecord:
    return ImageRecord(
        id=row.id,
        original_filename=row.original_filename,
        content_type=row.content_type,
        width=row.width,
        height=row.height,
        thumb_width=row.thumb_width,
        thumb_height=row.thumb_height,
        thumb_content_type=row.thumb_content_type,
        size_bytes=row.size_bytes,
        tags=sorted(t.tag for t in row.tags),
        original_blob_ref=row.original_blob_ref,
        thumb_blob_ref=row.thumb_blob_ref,
        created_at=_as_utc(row.created_at),
    )


def make_engine(database_url: str):
    """Creates an engine; SQLite gets a cross-thread connection and foreign keys."""
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, connect_args={"check_same_thread": False, "timeout": 30})

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(database_url, pool_pre_ping=True, pool_recycle=3600)


# -------------------------
# Metadata Store
# -------------------------
class MetadataStore:
    """
        Relational store for image records.

        Every public method opens its own session, so one instance can be
        shared by all request threads. SQLAlchemy errors propagate; the
        callers translate them into StorageException.
    """
    def __init__(self, database_url: str):
        self.engine = make_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine)
        log.info("Initialized metadata store (%s)", self.engine.url.get_backend_name())

    def create_schema(self):
        Base.metadata.create_all(bind=self.engine)
        log.info("Metadata schema ready")

    def insert_record(self, image: NewImage) -> ImageRecord:
        """Inserts the image row and its tags in one transaction."""
        with self.SessionLocal() as db:
            try:
                row = ImageRow(
                    original_filename=image.original_filename,
                    content_type=image.content_type,
                    width=image.width,
                    height=image.height,
                    thumb_width=image.thumb_width,
                    thumb_height=image.thumb_height,
                    thumb_content_type=image.thumb_content_type,
                    size_bytes=image.size_bytes,
                    original_blob_ref=image.original_blob_ref,
                    thumb_blob_ref=image.thumb_blob_ref,
                    created_at=datetime.now(timezone.utc),
                    tags=[ImageTagRow(tag=tag) for tag in image.tags],
                )
                db.add(row)
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
            record = to_record(row)
        log.debug("Inserted metadata %s", record.id)
        return record

    def get_record(self, image_id: int) -> Optional[ImageRecord]:
        if not 0 < image_id <= MAX_IMAGE_ID:
            return None
        with self.SessionLocal() as db:
            row = db.get(ImageRow, image_id)
            return to_record(row) if row else None

    def list_records(self) -> List[ImageRecord]:
        with self.SessionLocal() as db:
            rows = db.query(ImageRow).order_by(ImageRow.created_at, ImageRow.id).all()
            return [to_record(row) for row in rows]

    def search_by_tag(self, tag: str) -> List[ImageRecord]:
        """``tag`` must already be normalized."""
        with self.SessionLocal() as db:
            rows = (
                db.query(ImageRow)
                .join(ImageTagRow, ImageTagRow.image_id == ImageRow.id)
                .filter(ImageTagRow.tag == tag)
                .order_by(ImageRow.created_at, ImageRow.id)
                .all()
            )
            return [to_record(row) for row in rows]

    def referenced_blob_refs(self) -> Set[str]:
        with self.SessionLocal() as db:
            refs = set()
            for original_ref, thumb_ref in db.query(ImageRow.original_blob_ref, ImageRow.thumb_blob_ref):
                refs.add(original_ref)
                refs.add(thumb_ref)
            return refs

    def close(self):
        self.engine.dispose()
        log.info("Closed metadata store")
