"""Tests for the health endpoint."""

from signflow.database import database
from signflow.infrastructure.storage import S3StorageService, StorageConfig, s3_storage


class TestHealth:
    """Tests for GET /health."""

    def test_storage_outage_degrades(self, client, engine, monkeypatch):
        """Test a reachable database with storage off reports degraded."""
        monkeypatch.setattr(database, "_engine", engine)
        monkeypatch.setattr(s3_storage, "_storage_service", S3StorageService(StorageConfig(enabled=False)))

        body = client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["database"] == "healthy"
        assert body["storage"]["status"] == "unhealthy"
