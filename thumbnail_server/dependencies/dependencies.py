from fastapi import Request
from thumbnail_server.image_service.ingest import IngestionCoordinator
from thumbnail_server.image_service.retrieval import RetrievalService

def get_ingestion_coordinator(request: Request) -> IngestionCoordinator:
    """Dependency provider for IngestionCoordinator"""
    return request.app.state.ingestor

def get_retrieval_service(request: Request) -> RetrievalService:
    """Dependency provider for RetrievalService"""
    return request.app.state.retrieval
