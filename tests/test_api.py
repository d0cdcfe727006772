from fastapi import status

from conftest import SAMPLE_ANALYSIS, auth_header


def register(client, email="alice@example.com", password="pw123", path="/api/auth/register"):
    return client.post(path, json={"email": email, "password": password, "name": "Alice"})


def test_health(test_client):
    response = test_client.get("/api/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok", "storage": "memory"}
    assert "X-Request-ID" in response.headers


def test_register_returns_token_and_user(test_client, auth_service):
    response = register(test_client)
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["user"]["email"] == "alice@example.com"
    assert body["user"]["name"] == "Alice"
    assert "password" not in body["user"]
    assert auth_service.verify_token(body["token"]).sub == body["user"]["id"]


def test_signup_alias_and_duplicate(test_client):
    assert register(test_client, path="/api/auth/signup").status_code == 200
    response = register(test_client, email="ALICE@example.com")
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json() == {"error": "User already exists"}


def test_register_missing_fields(test_client):
    response = test_client.post("/api/auth/register", json={"email": "alice@example.com"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "required" in response.json()["error"]


def test_password_is_stored_hashed(test_client, storage):
    register(test_client)
    assert storage.get_user_by_email("alice@example.com").password_hash != "pw123"


def test_login(test_client):
    user_id = register(test_client).json()["user"]["id"]

    ok = test_client.post("/api/auth/login", json={"email": "Alice@Example.com", "password": "pw123"})
    assert ok.status_code == 200
    assert ok.json()["user"]["id"] == user_id

    wrong_password = test_client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope"})
    unknown_email = test_client.post("/api/auth/login", json={"email": "bob@example.com", "password": "pw123"})
    assert wrong_password.status_code == unknown_email.status_code == status.HTTP_401_UNAUTHORIZED
    assert wrong_password.json() == unknown_email.json() == {"error": "Invalid credentials"}

    missing = test_client.post("/api/auth/login", json={"password": "pw123"})
    assert missing.status_code == status.HTTP_400_BAD_REQUEST


def test_profile_and_me(test_client):
    body = register(test_client).json()
    headers = auth_header(body["token"])

    profile = test_client.get("/api/auth/profile", headers=headers)
    assert profile.status_code == 200
    assert profile.json() == body["user"]

    me = test_client.get("/api/me", headers=headers)
    assert me.json() == {"user": body["user"]}


def test_protected_routes_need_a_valid_token(test_client):
    assert test_client.get("/api/auth/profile").json() == {"error": "No token provided"}
    assert test_client.get("/api/auth/profile").status_code == 401
    assert test_client.get("/api/analyses", headers={"Authorization": "Bearer"}).status_code == 401
    assert test_client.get("/api/analyses", headers=auth_header("garbage")).status_code == 401


def test_profile_of_deleted_user_is_404(test_client, auth_service):
    token = auth_service.create_token("mock_gone", "gone@example.com")
    response = test_client.get("/api/auth/profile", headers=auth_header(token))
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_analysis_routes_reject_tokens_for_unknown_users(test_client, auth_service, storage):
    headers = auth_header(auth_service.create_token("mock_gone", "gone@example.com"))
    payload = {"resumeText": "resume", "analysis": SAMPLE_ANALYSIS}

    assert test_client.post("/api/analyses", json=payload, headers=headers).status_code == status.HTTP_404_NOT_FOUND
    assert test_client.post("/api/analysis", json=payload, headers=headers).status_code == status.HTTP_404_NOT_FOUND
    assert test_client.get("/api/analyses", headers=headers).status_code == status.HTTP_404_NOT_FOUND
    assert test_client.get("/api/analysis/mock_gone", headers=headers).status_code == status.HTTP_404_NOT_FOUND
    assert test_client.delete("/api/analyses/any", headers=headers).status_code == status.HTTP_404_NOT_FOUND
    assert storage.list_analyses("mock_gone") == []


def test_save_and_list_analyses(test_client):
    body = register(test_client).json()
    headers = auth_header(body["token"])

    first = test_client.post("/api/analyses", json={"resumeText": "first", "analysis": SAMPLE_ANALYSIS}, headers=headers)
    second = test_client.post("/api/analysis", json={"resumeText": "second", "analysis": SAMPLE_ANALYSIS}, headers=headers)
    assert first.status_code == second.status_code == 200
    assert first.json()["message"] == "Analysis saved"
    assert "createdAt" in first.json()

    listed = test_client.get("/api/analyses", headers=headers).json()
    assert [item["resumeText"] for item in listed] == ["second", "first"]
    assert listed[0]["userId"] == body["user"]["id"]
    assert listed[0]["analysis"]["score"] == 71

    by_user = test_client.get(f"/api/analysis/{body['user']['id']}", headers=headers).json()
    assert [item["id"] for item in by_user["items"]] == [item["id"] for item in listed]


def test_save_analysis_requires_body_fields(test_client):
    headers = auth_header(register(test_client).json()["token"])
    response = test_client.post("/api/analyses", json={"resumeText": "only text"}, headers=headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_cannot_read_someone_elses_analyses(test_client):
    alice = register(test_client).json()
    bob = register(test_client, email="bob@example.com").json()
    response = test_client.get(f"/api/analysis/{alice['user']['id']}", headers=auth_header(bob["token"]))
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_delete_analysis(test_client):
    alice = register(test_client).json()
    bob = register(test_client, email="bob@example.com").json()
    saved = test_client.post(
        "/api/analyses", json={"resumeText": "x", "analysis": SAMPLE_ANALYSIS}, headers=auth_header(alice["token"])
    ).json()

    assert test_client.delete(f"/api/analyses/{saved['id']}", headers=auth_header(bob["token"])).status_code == 404
    assert test_client.delete(f"/api/analyses/{saved['id']}", headers=auth_header(alice["token"])).json() == {"deleted": True}
    assert test_client.get("/api/analyses", headers=auth_header(alice["token"])).json() == []
