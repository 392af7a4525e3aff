from fastapi.testclient import TestClient

from filedrop.main import app


def test_version_route_available() -> None:
    with TestClient(app) as client:
        response = client.get("/version")
        assert response.status_code == 200
        payload = response.json()
        assert payload["app_name"] == "filedrop"
        assert "app_version" in payload
        assert "session_backend" in payload


def test_app_version_header_present() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert response.headers.get("X-Filedrop-App-Version") is not None


def test_metrics_exposes_transfer_counters(transfer) -> None:
    with TestClient(app) as client:
        client.post(
            "/api/upload/init",
            json={"fileName": "m.bin", "fileSize": 1, "totalChunks": 1, "chunkSize": 1},
        )
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "sessions_created_total" in response.text
        assert "http_request_duration_seconds" in response.text


def test_unknown_route_uses_error_envelope() -> None:
    with TestClient(app) as client:
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "not_found"
        assert body["request_id"]
