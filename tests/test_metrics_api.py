from fastapi.testclient import TestClient

import src.api.main as api_main
from src.core import metrics
from src.core.metrics import reset_metrics_for_tests


def test_metrics_endpoint_returns_prometheus_payload(monkeypatch) -> None:
    reset_metrics_for_tests()
    monkeypatch.setattr(api_main.settings, "metrics_enabled", True)

    metrics.record_job(status="completed")
    metrics.record_rows(stage="record", outcome="failure", count=2)
    metrics.record_email(provider="google", status="sent", count=3)
    metrics.record_termination(reason="operator")

    client = TestClient(api_main.app)
    version_response = client.get("/version")
    assert version_response.status_code == 200

    metrics_response = client.get("/metrics")
    assert metrics_response.status_code == 200
    assert metrics_response.headers["content-type"].startswith("text/plain")
    body = metrics_response.text
    assert "loomreach_build_info" in body
    assert 'loomreach_http_requests_total{method="GET",path="/version",status="200"}' in body
    assert 'loomreach_jobs_total{status="completed"} 1' in body
    assert 'loomreach_rows_total{stage="record",outcome="failure"} 2' in body
    assert 'loomreach_emails_total{provider="google",status="sent"} 3' in body
    assert 'loomreach_terminations_total{reason="operator"} 1' in body


def test_metrics_endpoint_disabled_returns_404(monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "metrics_enabled", False)
    client = TestClient(api_main.app)
    response = client.get("/metrics")
    assert response.status_code == 404
