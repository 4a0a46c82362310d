from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from app.core.scheduler import ReviewDeadlineManager
from app.services.review_service import ReviewService
from app.services.workflow_service import WorkflowService

NOW = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)


def _days_ago(days: float) -> str:
    return (NOW - timedelta(days=days)).isoformat()


@pytest.fixture
def manager(fake_db, email_stub, workflow_config):
    return ReviewDeadlineManager(fake_db, email=email_stub, config=workflow_config)


def _invitation(inv_id: str, *, invited_days_ago: float, status="pending", reminded=None, **extra):
    row = {
        "id": inv_id,
        "article_id": "art-1",
        "reviewer_id": f"rev-{inv_id}",
        "review_id": f"review-{inv_id}",
        "reviewer_email": f"{inv_id}@university.edu",
        "reviewer_name": f"Reviewer {inv_id}",
        "invited_at": _days_ago(invited_days_ago),
        "status": status,
        "first_reminder_sent": reminded,
        "invitation_token": f"token-{inv_id}",
    }
    row.update(extra)
    return row


@pytest.fixture
def seeded(fake_db):
    fake_db.seed("articles", {"id": "art-1", "title": "Quantum Widgets", "manuscript_number": "JD-2026-00000001"})
    fake_db.seed(
        "review_invitations",
        # 8 天前邀请、从未提醒 -> 提醒
        _invitation("due-reminder", invited_days_ago=8),
        # 3 天前邀请 -> 不处理
        _invitation("fresh", invited_days_ago=3),
        # 15 天前邀请、已提醒 -> 撤回
        _invitation("due-withdrawal", invited_days_ago=15, reminded=_days_ago(8)),
        # 10 天前邀请、已提醒但未到撤回时限 -> 不处理
        _invitation("reminded-recently", invited_days_ago=10, reminded=_days_ago(3)),
        # 20 天前邀请但已接受 -> 不处理
        _invitation("accepted-old", invited_days_ago=20, status="accepted"),
        # 20 天前邀请、从未提醒 -> 本次只提醒，不撤回
        _invitation("never-reminded-old", invited_days_ago=20),
    )
    fake_db.seed(
        "reviews",
        *[
            {"id": f"review-{i}", "article_id": "art-1", "status": "pending"}
            for i in ("due-reminder", "fresh", "due-withdrawal", "reminded-recently", "never-reminded-old")
        ],
    )
    return fake_db


def test_calculate_deadlines(manager):
    deadlines = manager.calculate_deadlines(NOW)
    assert deadlines["response_deadline"] == NOW + timedelta(days=7)
    assert deadlines["review_deadline"] == NOW + timedelta(days=28)


def test_days_until():
    assert ReviewDeadlineManager.days_until(NOW + timedelta(days=2, hours=1), NOW) == 3
    assert ReviewDeadlineManager.days_until((NOW - timedelta(days=1)).isoformat(), NOW) == -1
    with pytest.raises(ValueError):
        ReviewDeadlineManager.days_until("not-a-date", NOW)


def test_process_deadlines_touches_exactly_the_due_rows(manager, seeded, email_stub):
    result = manager.process_deadlines(NOW)

    assert result["reminders_processed"] == 2
    assert result["withdrawals_processed"] == 1
    assert result["errors"] == []
    assert result["processed_at"] == NOW.isoformat()

    inv = {r["id"]: r for r in seeded.rows("review_invitations")}
    assert inv["due-reminder"]["first_reminder_sent"] == NOW.isoformat()
    assert inv["due-reminder"]["status"] == "pending"
    assert inv["never-reminded-old"]["first_reminder_sent"] == NOW.isoformat()
    assert inv["never-reminded-old"]["status"] == "pending"

    assert inv["due-withdrawal"]["status"] == "withdrawn"
    assert inv["due-withdrawal"]["withdrawn_at"] == NOW.isoformat()
    assert seeded.get("reviews", "review-due-withdrawal")["status"] == "withdrawn"

    assert inv["fresh"]["first_reminder_sent"] is None
    assert inv["reminded-recently"]["status"] == "pending"
    assert inv["reminded-recently"]["first_reminder_sent"] == _days_ago(3)
    assert inv["accepted-old"]["status"] == "accepted"
    assert seeded.get("reviews", "review-fresh")["status"] == "pending"

    templates = [c.kwargs["template_name"] for c in email_stub.send_template_email.call_args_list]
    assert sorted(templates) == ["review_reminder.html", "review_reminder.html", "review_withdrawal.html"]


def test_second_run_withdraws_previously_reminded_rows(manager, seeded):
    manager.process_deadlines(NOW)

    result = manager.process_deadlines(NOW + timedelta(days=1))

    assert result["reminders_processed"] == 0
    assert result["withdrawals_processed"] == 1
    assert seeded.get("review_invitations", "never-reminded-old")["status"] == "withdrawn"


def test_reminder_failure_is_recorded_and_other_rows_continue(manager, seeded, email_stub):
    def _send(**kwargs):
        return kwargs["to_email"] != "due-reminder@university.edu"

    email_stub.send_template_email.side_effect = _send

    result = manager.process_deadlines(NOW)

    assert result["reminders_processed"] == 1
    assert result["errors"] == ["Failed to send reminder to due-reminder@university.edu: email delivery failed"]
    assert seeded.get("review_invitations", "due-reminder")["first_reminder_sent"] is None
    assert seeded.get("review_invitations", "never-reminded-old")["first_reminder_sent"] == NOW.isoformat()
    assert result["withdrawals_processed"] == 1


def test_unconfigured_email_still_marks_reminders(manager, seeded, email_stub):
    email_stub.send_template_email.return_value = False
    email_stub.is_configured.return_value = False

    result = manager.process_deadlines(NOW)

    assert result["reminders_processed"] == 2
    assert result["errors"] == []


def test_withdrawal_email_failure_does_not_block_withdrawal(manager, seeded, email_stub):
    def _send(**kwargs):
        if kwargs["template_name"] == "review_withdrawal.html":
            raise RuntimeError("smtp down")
        return True

    email_stub.send_template_email.side_effect = _send

    result = manager.process_deadlines(NOW)

    assert result["withdrawals_processed"] == 1
    assert seeded.get("review_invitations", "due-withdrawal")["status"] == "withdrawn"


def test_query_failure_is_reported(manager, seeded):
    seeded.failures[("review_invitations", "select")] = RuntimeError("db offline")

    result = manager.process_deadlines(NOW)

    assert result["reminders_processed"] == 0
    assert result["withdrawals_processed"] == 0
    assert result["errors"] == [
        "Error processing reminders: db offline",
        "Error processing withdrawals: db offline",
    ]


def test_deadline_statistics(manager, seeded):
    stats = manager.deadline_statistics(NOW)

    assert stats["pending_reminders"] == 2
    assert stats["pending_withdrawals"] == 1
    assert stats["total_pending"] == 5
    assert stats["total_withdrawn"] == 0
    assert stats["reminder_days"] == 7
    assert stats["withdrawal_days"] == 14


def test_check_overdue_reviews(manager, fake_db):
    fake_db.seed(
        "reviews",
        {"id": "late", "reviewer_id": "rev-1", "article_id": "art-1", "status": "accepted",
         "review_deadline": _days_ago(1)},
        {"id": "on-time", "reviewer_id": "rev-2", "article_id": "art-1", "status": "accepted",
         "review_deadline": (NOW + timedelta(days=5)).isoformat()},
        {"id": "done", "reviewer_id": "rev-3", "article_id": "art-1", "status": "completed",
         "review_deadline": _days_ago(10)},
    )

    result = manager.check_overdue_reviews(NOW)

    assert result["overdue_marked"] == 1
    assert fake_db.get("reviews", "late")["status"] == "overdue"
    assert fake_db.get("reviews", "on-time")["status"] == "accepted"
    assert fake_db.get("reviews", "done")["status"] == "completed"
    notes = fake_db.rows("notifications")
    assert [(n["user_id"], n["type"]) for n in notes] == [("rev-1", "review_overdue")]


def test_withdrawal_leaves_submitted_review_untouched(manager, fake_db):
    fake_db.seed("articles", {"id": "art-1", "title": "Quantum Widgets"})
    fake_db.seed("review_invitations", _invitation("stale", invited_days_ago=20, reminded=_days_ago(8)))
    fake_db.seed(
        "reviews",
        {"id": "review-stale", "article_id": "art-1", "status": "completed", "recommendation": "accept"},
    )

    result = manager.process_deadlines(NOW)

    assert result["withdrawals_processed"] == 1
    assert fake_db.get("review_invitations", "stale")["status"] == "withdrawn"
    review = fake_db.get("reviews", "review-stale")
    assert review["status"] == "completed"
    assert review["recommendation"] == "accept"


def test_unaccepted_review_cannot_be_submitted_before_withdrawal(fake_db, email_stub, workflow_config):
    fake_db.seed(
        "articles",
        {"id": "art-1", "title": "Quantum Widgets", "status": "under_review", "author_id": "author-1",
         "editor_id": "ed-1", "reviewer_ids": []},
    )
    fake_db.seed("user_profiles", {"id": "rev-1", "email": "rev1@university.edu", "roles": ["reviewer"]})
    workflow = WorkflowService(fake_db, email=email_stub)
    reviews = ReviewService(fake_db, workflow=workflow, email=email_stub, config=workflow_config)
    invitation = reviews.invite_reviewer(
        article_id="art-1", reviewer_id="rev-1", invited_by={"id": "ed-1", "roles": ["editor"]},
        now=NOW - timedelta(days=20),
    )

    with pytest.raises(HTTPException) as exc:
        reviews.submit_review(
            review_id=invitation["review_id"],
            reviewer={"id": "rev-1", "roles": ["reviewer"]},
            recommendation="accept",
            comments="Looks fine",
            now=NOW - timedelta(days=10),
        )
    assert exc.value.status_code == 400
    assert exc.value.detail == "Review invitation has not been accepted"

    manager = ReviewDeadlineManager(fake_db, email=email_stub, config=workflow_config)
    manager.process_deadlines(NOW - timedelta(days=6))
    result = manager.process_deadlines(NOW)

    assert result["withdrawals_processed"] == 1
    assert fake_db.get("reviews", invitation["review_id"])["status"] == "withdrawn"
    assert fake_db.get("articles", "art-1")["status"] == "under_review"


def test_deadline_statistics_use_exact_counts(manager, seeded):
    # 中文注释: 行数上限小于实际行数时，统计仍应返回真实总数
    seeded.max_rows = 2

    stats = manager.deadline_statistics(NOW)

    assert stats["pending_reminders"] == 2
    assert stats["total_pending"] == 5
