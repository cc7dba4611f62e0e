"""
Tests for health and cron endpoints
"""
from unittest.mock import patch

CRON_HEADERS = {"Authorization": "Bearer cron-secret"}


class TestHealth:
    """Liveness"""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_healthy(self, client):
        with patch("vibephoto.db.engine.test_connection", return_value=True):
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_unhealthy_database(self, client):
        with patch("vibephoto.db.engine.test_connection", return_value=False):
            response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestCronEndpoints:
    """CRON_SECRET protection"""

    def test_requires_secret(self, client):
        assert client.post("/api/cron/sync-jobs").status_code == 401
        assert client.post("/api/cron/cleanup").status_code == 401

    def test_wrong_secret(self, client):
        response = client.post("/api/cron/sync-jobs", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_sync_jobs(self, client):
        summary = {"processed": 3, "updated": 1, "errors": 0, "results": []}
        with patch("vibephoto.cron_routes.ReconciliationService") as service_cls:
            service_cls.return_value.sync_processing_jobs.return_value = summary
            response = client.post("/api/cron/sync-jobs", headers=CRON_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["processed"] == 3
        assert "duration_ms" in body

    def test_cleanup(self, client):
        with patch("vibephoto.cron_routes.MaintenanceService") as service_cls:
            service_cls.return_value.daily_cleanup.return_value = {"expired_credit_purchases": 2}
            response = client.post("/api/cron/cleanup", headers=CRON_HEADERS)
        assert response.status_code == 200
        assert response.json()["expired_credit_purchases"] == 2
