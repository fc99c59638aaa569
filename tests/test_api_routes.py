"""
End-to-end tests for the subscription, tracking and personalization routes
"""
from unittest.mock import patch


def signup(client, email="flow@example.com", name=None):
    """Create an account and return Bearer headers for it."""
    response = client.post(
        "/api/auth/signup",
        json={"email": email, "password": "StrongPass123!", "name": name},
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def test_health_reports_scheduler(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["data"]["scheduler"]["running"] is False
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_protected_routes_require_auth(client):
    assert client.get("/api/subscription/status").status_code == 401
    assert client.post("/api/mood", json={"score": 50}).status_code == 401
    assert client.get("/api/personalization/profile").status_code == 401


def test_trial_lifecycle(client):
    headers = signup(client)

    status = client.get("/api/subscription/status", headers=headers).json()["data"]
    assert status["tier"] == "free"
    assert status["subscription"] is None

    started = client.post("/api/subscription/start-trial", json={"plan_id": "annually"}, headers=headers)
    assert started.status_code == 201
    trial = started.json()["data"]
    assert trial["status"] == "trialing"
    assert trial["plan_id"] == "annually"
    assert trial["auto_renew"] is True

    again = client.post("/api/subscription/start-trial", json={"plan_id": "monthly"}, headers=headers)
    assert again.status_code == 400
    assert again.json()["error"] == "TRIAL_NOT_AVAILABLE"

    status = client.get("/api/subscription/status", headers=headers).json()["data"]
    assert status["tier"] == "premium"
    assert status["is_active"] is True
    assert status["subscription"]["id"] == trial["id"]

    cancelled = client.post("/api/subscription/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["auto_renew"] is False
    assert cancelled.json()["data"]["cancelled_at"] is not None

    # Access continues until the trial ends
    status = client.get("/api/subscription/status", headers=headers).json()["data"]
    assert status["tier"] == "premium"


def test_unknown_plan_rejected(client):
    headers = signup(client)

    response = client.post("/api/subscription/start-trial", json={"plan_id": "lifetime"}, headers=headers)

    assert response.status_code == 400


def test_cancel_without_subscription(client):
    headers = signup(client)

    response = client.post("/api/subscription/cancel", headers=headers)

    assert response.status_code == 404
    assert response.json()["error"] == "NO_SUBSCRIPTION"


def test_checkout_rejects_unknown_plan(client):
    headers = signup(client)

    response = client.post("/api/billing/create-checkout-session", json={"plan_id": "weekly"}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PLAN"


def test_webhook_without_secret_is_acknowledged(client):
    with patch("routers.billing_router.settings.stripe_webhook_secret", None):
        response = client.post("/api/billing/webhook", content=b"{}")

    assert response.status_code == 200
    assert response.json() == {"ok": False, "received": True, "error": "Webhook secret not configured"}


def test_journal_and_mood_logging(client):
    headers = signup(client)

    journal = client.post(
        "/api/journal",
        json={"title": "Monday", "content": "Slept well", "mood": 4, "tags": ["sleep"], "emotional_state": "calm"},
        headers=headers,
    )
    assert journal.status_code == 201
    assert journal.json()["data"]["id"] == 1

    mood = client.post("/api/mood", json={"score": 72, "note": "steady"}, headers=headers)
    assert mood.status_code == 201
    assert mood.json()["data"]["score"] == 72

    assert client.post("/api/mood", json={"score": 140}, headers=headers).status_code == 422
    assert client.post(
        "/api/journal", json={"title": "x", "content": "y", "mood": 9}, headers=headers
    ).status_code == 422


def test_chat_session_flow(client):
    headers = signup(client)

    started = client.post("/api/chat/sessions", headers=headers)
    assert started.status_code == 201
    session_id = started.json()["data"]["session_id"]
    assert started.json()["data"]["status"] == "active"

    client.post(f"/api/chat/sessions/{session_id}/messages", json={"content": "Hi there"}, headers=headers)
    reply = client.post(
        f"/api/chat/sessions/{session_id}/messages",
        json={"role": "assistant", "content": "Hello! How are you feeling?"},
        headers=headers,
    )
    assert reply.status_code == 200
    assert reply.json()["data"]["message_count"] == 2
    assert [m["role"] for m in reply.json()["data"]["messages"]] == ["user", "assistant"]

    ended = client.post(f"/api/chat/sessions/{session_id}/end", headers=headers)
    assert ended.json()["data"]["status"] == "completed"
    assert ended.json()["data"]["end_time"] is not None

    late = client.post(f"/api/chat/sessions/{session_id}/messages", json={"content": "one more"}, headers=headers)
    assert late.status_code == 409
    assert late.json()["error"] == "SESSION_CLOSED"


def test_chat_sessions_are_private(client):
    owner = signup(client, "owner@example.com")
    other = signup(client, "other@example.com")
    session_id = client.post("/api/chat/sessions", headers=owner).json()["data"]["session_id"]

    response = client.post(f"/api/chat/sessions/{session_id}/messages", json={"content": "hi"}, headers=other)

    assert response.status_code == 404
    assert response.json()["error"] == "SESSION_NOT_FOUND"


def test_personalization_overrides(client):
    headers = signup(client)

    missing = client.get("/api/personalization/profile", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "PROFILE_NOT_FOUND"

    saved = client.put(
        "/api/personalization/overrides",
        json={"communication_style": "direct", "verbosity": "concise"},
        headers=headers,
    )
    assert saved.status_code == 200
    profile = saved.json()["data"]
    assert profile["user_overrides"] == {"communication_style": "direct", "verbosity": "concise"}
    assert profile["communication"]["style"] == "direct"
    assert profile["communication"]["verbosity"] == "concise"

    invalid = client.put("/api/personalization/overrides", json={"verbosity": "rambling"}, headers=headers)
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "INVALID_OVERRIDE"

    fetched = client.get("/api/personalization/profile", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["data"]["communication"]["style"] == "direct"


def test_signup_is_throttled(client):
    statuses = [
        client.post(
            "/api/auth/signup",
            json={"email": f"burst{n}@example.com", "password": "StrongPass123!"},
        ).status_code
        for n in range(6)
    ]

    assert statuses[:5] == [200] * 5
    assert statuses[5] == 429
