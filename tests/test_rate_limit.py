"""Rate limit: POST /notifications/test 5/minute per IP returns 429 after 5 requests."""
from fastapi.testclient import TestClient


def test_test_push_200_then_429(client: TestClient, auth_headers):
    headers = {**auth_headers, "X-Forwarded-For": "203.0.113.50"}
    for i in range(5):
        r = client.post("/notifications/test", headers=headers)
        assert r.status_code == 200, f"Request {i+1} should be 200"
    r = client.post("/notifications/test", headers=headers)
    assert r.status_code == 429
    j = r.json()
    assert j.get("error") == "Too many requests"
    assert j.get("status_code") == 429


def test_limit_is_per_ip(client: TestClient, auth_headers):
    for i in range(5):
        client.post("/notifications/test", headers={**auth_headers, "X-Forwarded-For": "203.0.113.60"})
    r = client.post("/notifications/test", headers={**auth_headers, "X-Forwarded-For": "203.0.113.61"})
    assert r.status_code == 200
