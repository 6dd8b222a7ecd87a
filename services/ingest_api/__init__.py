"""Music Ingest Pipeline - Ingest API service.

FastAPI service for uploads, processing status and library management.
"""

__all__: list[str] = []
