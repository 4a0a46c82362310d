from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from tests.utils.api_client import API_PREFIX, admin_key_headers, assert_error

ALICE = "11111111-1111-1111-1111-111111111111"
BOB = "22222222-2222-2222-2222-222222222222"


def _seed_invitations(db):
    now = datetime.now(timezone.utc)
    db.seed(
        "review_invitations",
        {"id": "remind-me", "article_id": "art-1", "reviewer_email": "a@university.edu", "status": "pending",
         "invited_at": (now - timedelta(days=8)).isoformat(), "first_reminder_sent": None},
        {"id": "withdraw-me", "article_id": "art-1", "reviewer_email": "b@university.edu", "status": "pending",
         "invited_at": (now - timedelta(days=15)).isoformat(),
         "first_reminder_sent": (now - timedelta(days=8)).isoformat()},
        {"id": "leave-me", "article_id": "art-1", "reviewer_email": "c@university.edu", "status": "pending",
         "invited_at": (now - timedelta(days=1)).isoformat(), "first_reminder_sent": None},
    )


@pytest.mark.asyncio
async def test_cron_requires_configured_admin_key(client: AsyncClient, services, monkeypatch):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    resp = await client.post(f"{API_PREFIX}/internal/cron/review-deadlines", headers=admin_key_headers("x"))
    assert_error(resp, 401, "Admin key not configured")

    monkeypatch.setenv("ADMIN_API_KEY", "cron-secret")
    resp = await client.post(f"{API_PREFIX}/internal/cron/review-deadlines", headers=admin_key_headers("wrong"))
    assert_error(resp, 401, "Invalid admin key")

    resp = await client.post(f"{API_PREFIX}/internal/cron/review-deadlines")
    assert_error(resp, 401, "Invalid admin key")


@pytest.mark.asyncio
async def test_cron_processes_deadlines(client: AsyncClient, services, monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "cron-secret")
    _seed_invitations(services.db)

    resp = await client.post(
        f"{API_PREFIX}/internal/cron/review-deadlines", headers=admin_key_headers("cron-secret")
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["reminders_processed"] == 1
    assert data["withdrawals_processed"] == 1
    assert data["errors"] == []
    assert services.db.get("review_invitations", "remind-me")["first_reminder_sent"]
    assert services.db.get("review_invitations", "withdraw-me")["status"] == "withdrawn"
    assert services.db.get("review_invitations", "leave-me")["first_reminder_sent"] is None


@pytest.mark.asyncio
async def test_cron_expires_assignments_and_marks_overdue(client: AsyncClient, services, monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "cron-secret")
    past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    services.db.seed("editor_assignments", {"id": "as-1", "status": "pending", "deadline": past})
    services.db.seed("reviews", {"id": "rv-1", "status": "accepted", "review_deadline": past, "reviewer_id": "r1"})

    resp = await client.post(
        f"{API_PREFIX}/internal/cron/expire-assignments", headers=admin_key_headers("cron-secret")
    )
    assert resp.json()["data"] == {"expired": 1}

    resp = await client.post(f"{API_PREFIX}/internal/cron/overdue-reviews", headers=admin_key_headers("cron-secret"))
    assert resp.json()["data"]["overdue_marked"] == 1
    assert services.db.get("reviews", "rv-1")["status"] == "overdue"


@pytest.mark.asyncio
async def test_admin_deadline_endpoints(client: AsyncClient, services, override_profile):
    _seed_invitations(services.db)

    override_profile({"id": "rev-1", "roles": ["reviewer"]})
    resp = await client.get(f"{API_PREFIX}/admin/review-deadlines")
    assert_error(resp, 403, "Insufficient permissions")

    override_profile({"id": "ed-1", "roles": ["editor"]})
    resp = await client.get(f"{API_PREFIX}/admin/review-deadlines")
    assert resp.status_code == 200
    stats = resp.json()["data"]
    assert (stats["pending_reminders"], stats["pending_withdrawals"], stats["total_pending"]) == (1, 1, 3)

    resp = await client.post(f"{API_PREFIX}/admin/review-deadlines")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Deadline processing completed"
    assert resp.json()["data"]["withdrawals_processed"] == 1


@pytest.mark.asyncio
async def test_messaging_endpoints(client: AsyncClient, services, override_profile):
    override_profile({"id": ALICE, "roles": ["author"]})
    resp = await client.post(
        f"{API_PREFIX}/messages/conversations",
        json={"subject": "About my submission", "participant_ids": [BOB], "content": "Hello"},
    )
    assert resp.status_code == 201
    conversation_id = resp.json()["data"]["id"]

    override_profile({"id": BOB, "roles": ["editor"]})
    resp = await client.get(f"{API_PREFIX}/messages/conversations")
    assert [c["id"] for c in resp.json()["data"]] == [conversation_id]

    resp = await client.post(
        f"{API_PREFIX}/messages/conversations/{conversation_id}/messages", json={"content": "Thanks, looking now"}
    )
    assert resp.status_code == 201

    resp = await client.post(f"{API_PREFIX}/messages/conversations/{conversation_id}/read")
    assert resp.json()["data"] == {"marked": 1}

    resp = await client.get(f"{API_PREFIX}/messages/conversations/{conversation_id}/messages")
    assert [m["content"] for m in resp.json()["data"]] == ["Hello", "Thanks, looking now"]

    override_profile({"id": "33333333-3333-3333-3333-333333333333", "roles": ["author"]})
    resp = await client.get(f"{API_PREFIX}/messages/conversations/{conversation_id}/messages")
    assert_error(resp, 403, "Not a participant of this conversation")


@pytest.mark.asyncio
async def test_notification_endpoints(client: AsyncClient, services, override_profile):
    mine = services.notifications.create_notification(
        user_id="u1", article_id=None, type="system", title="Hi", content="c"
    )
    theirs = services.notifications.create_notification(
        user_id="u2", article_id=None, type="system", title="Other", content="c"
    )
    override_profile({"id": "u1", "roles": ["author"]})

    resp = await client.get(f"{API_PREFIX}/notifications")
    assert [n["id"] for n in resp.json()["data"]] == [mine["id"]]

    resp = await client.patch(f"{API_PREFIX}/notifications/{mine['id']}/read")
    assert resp.json()["data"]["is_read"] is True

    resp = await client.patch(f"{API_PREFIX}/notifications/{theirs['id']}/read")
    assert_error(resp, 404, "Notification not found")
