def _create(client, payload):
    r = client.post("/api/applications", json=payload)
    assert r.status_code == 201
    return r.json()["data"]["applicationId"]


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"]["status"] == "healthy"
    assert body["data"]["database"] == "connected"
    assert body["data"]["version"]
    assert r.headers["X-Request-ID"]
    assert r.headers["X-Robots-Tag"] == "noindex, nofollow"
    assert r.headers["X-Content-Type-Options"] == "nosniff"


def test_request_id_is_echoed(client):
    r = client.get("/api/health", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


def test_create_get_and_list(client, api_payload):
    r = client.post("/api/applications", json=api_payload)
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["data"]["status"] == "submitted"
    app_id = body["data"]["applicationId"]

    r = client.get(f"/api/applications/{app_id}")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["applicationId"] == app_id
    assert data["personalDetails"]["firstName"] == "Jane"
    assert data["personalDetails"]["addressPostcode"] == "SW1A 1AA"
    assert data["licenseDetails"]["activities"] == ["sale-on"]
    assert data["licenseDetails"]["operatingHours"]["monday"] == "11:00 to 23:00"

    r = client.get("/api/applications")
    assert r.status_code == 200
    body = r.json()
    assert [a["applicationId"] for a in body["data"]] == [app_id]
    assert body["pagination"] == {"limit": 50, "offset": 0, "count": 1}


def test_create_validation_failure(client):
    r = client.post("/api/applications", json={"personalDetails": {"firstName": "Jane"}})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "VALIDATION_ERROR"
    assert body["message"]
    assert {"field", "message", "value"} <= set(body["details"][0])
    assert client.get("/api/applications").json()["pagination"]["count"] == 0


def test_create_rejects_structured_value_in_text_field(client, api_payload):
    api_payload["personalDetails"]["firstName"] = {"evil": 1}
    r = client.post("/api/applications", json=api_payload)
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert [d["field"] for d in body["details"]] == ["personalDetails.firstName"]
    assert body["details"][0]["value"] == {"evil": 1}
    assert client.get("/api/applications").json()["pagination"]["count"] == 0


def test_create_rejects_non_object_body(client):
    r = client.post("/api/applications", json=["nope"])
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_list_limit_bounds(client):
    assert client.get("/api/applications?limit=0").status_code == 400
    assert client.get("/api/applications?limit=101").status_code == 400
    assert client.get("/api/applications?limit=1").status_code == 200
    assert client.get("/api/applications?limit=100").status_code == 200
    r = client.get("/api/applications?limit=abc")
    assert r.status_code == 400
    assert r.json()["error"] == "VALIDATION_ERROR"
    assert client.get("/api/applications?status=pending").status_code == 400


def test_status_update_and_filter(client, api_payload):
    first = _create(client, api_payload)
    second = _create(client, api_payload)
    r = client.patch(f"/api/applications/{first}/status", json={"status": "under-review"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert r.json()["data"]["status"] == "under-review"

    r = client.get("/api/applications?status=under-review")
    assert [a["applicationId"] for a in r.json()["data"]] == [first]
    r = client.get("/api/applications?status=submitted")
    assert [a["applicationId"] for a in r.json()["data"]] == [second]


def test_status_update_failures(client, api_payload):
    app_id = _create(client, api_payload)
    r = client.patch(f"/api/applications/{app_id}/status", json={"status": "pending"})
    assert r.status_code == 400
    assert r.json()["error"] == "VALIDATION_ERROR"
    r = client.patch(f"/api/applications/{app_id}/status", json={})
    assert r.status_code == 400
    r = client.patch("/api/applications/missing/status", json={"status": "approved"})
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "NOT_FOUND", "message": "Application not found"}


def test_delete(client, api_payload):
    app_id = _create(client, api_payload)
    r = client.delete(f"/api/applications/{app_id}")
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert client.get(f"/api/applications/{app_id}").status_code == 404


def test_delete_missing_application(client):
    r = client.delete("/api/applications/does-not-exist")
    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "NOT_FOUND"


def test_unknown_api_route(client):
    r = client.get("/api/nothing-here")
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_api_needs_no_csrf_token(client, api_payload):
    # API clients are not browsers holding a session
    assert client.post("/api/applications", json=api_payload).status_code == 201


def test_api_rate_limit(client, monkeypatch):
    from licensing.config import settings

    monkeypatch.setattr(settings, "ENV", "dev")
    monkeypatch.setattr(settings, "API_RATE_LIMIT_MAX", 2)
    assert client.get("/api/applications").status_code == 200
    assert client.get("/api/applications").status_code == 200
    r = client.get("/api/applications")
    assert r.status_code == 429
    assert r.json()["error"] == "RATE_LIMIT_EXCEEDED"
    assert int(r.headers["Retry-After"]) >= 1
