import io
import os
import pytest
from moto import mock_aws
from fastapi.testclient import TestClient
from PIL import Image
import boto3

# Set test environment variables BEFORE importing app modules
os.environ["TESTING"] = "true"

# Dummy AWS credentials for moto
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_SECURITY_TOKEN"] = "testing"
os.environ["AWS_SESSION_TOKEN"] = "testing"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["S3_BUCKET"] = "thumbnail-test-bucket"
# Clear the AWS_ENDPOINT_URL so moto mocks are used instead of localstack
os.environ.pop("AWS_ENDPOINT_URL", None)

from thumbnail_server.main import app
from thumbnail_server.settings import settings
from thumbnail_server.dependencies.dependencies import get_ingestion_coordinator, get_retrieval_service
from thumbnail_server.storage.filesystem import FilesystemBlobStore
from thumbnail_server.storage.metadata import MetadataStore
from thumbnail_server.storage.s3 import S3BlobStore
from thumbnail_server.image_service.ingest import IngestionCoordinator
from thumbnail_server.image_service.retrieval import RetrievalService


def make_image_bytes(size=(10, 10), fmt="PNG", color="red", mode="RGB"):
    """Generate a simple valid image in-memory."""
    img = Image.new(mode, size, color=color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def make_gradient_png(size=(256, 256)):
    """A PNG with enough entropy that truncating it cuts into pixel data."""
    img = Image.linear_gradient("L").resize(size).rotate(17)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def blob_store(tmp_path):
    return FilesystemBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def metadata_store(tmp_path):
    store = MetadataStore(f"sqlite:///{tmp_path / 'metadata.db'}")
    store.create_schema()
    yield store
    store.close()


@pytest.fixture
def ingestor(blob_store, metadata_store):
    return IngestionCoordinator(
        blob_store,
        metadata_store,
        max_upload_bytes=20 * 1024 * 1024,
        chunk_size=64 * 1024,
        max_edge=200,
        max_pixels=40_000_000,
        thumbnail_format="PNG",
    )


@pytest.fixture
def retrieval(blob_store, metadata_store):
    return RetrievalService(blob_store, metadata_store)


@pytest.fixture(scope="function")
def aws_credentials():
    """Mocked AWS Credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"


@pytest.fixture(scope="function")
def s3_blob_store(aws_credentials):
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket="thumbnail-test-bucket")
        yield S3BlobStore(bucket="thumbnail-test-bucket", prefix="blobs/")


@pytest.fixture(scope="function")
def test_client(tmp_path, monkeypatch, ingestor, retrieval):
    # The lifespan builds its own stores; keep them inside tmp_path
    monkeypatch.setattr(settings, "blob_backend", "filesystem")
    monkeypatch.setattr(settings, "blob_dir", str(tmp_path / "app-blobs"))
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setattr(settings, "sweep_on_startup", False)

    # Route requests to the services bound to the test fixtures
    app.dependency_overrides[get_ingestion_coordinator] = lambda: ingestor
    app.dependency_overrides[get_retrieval_service] = lambda: retrieval

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
