from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from app.services.editor_assignment_service import EditorAssignmentService
from app.services.workflow_service import WorkflowService

NOW = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)
EDITOR = {"id": "ed-1", "email": "ed1@university.edu", "roles": ["associate_editor"]}
OTHER_EDITOR = {"id": "ed-2", "email": "ed2@university.edu", "roles": ["editor"]}
MANAGING = {"id": "me-1", "email": "me@university.edu", "roles": ["managing_editor"]}


@pytest.fixture
def service(fake_db, email_stub, workflow_config):
    workflow = WorkflowService(fake_db, email=email_stub)
    return EditorAssignmentService(fake_db, workflow=workflow, email=email_stub, config=workflow_config)


@pytest.fixture
def seeded(fake_db):
    fake_db.seed(
        "articles",
        {"id": "art-1", "title": "Quantum Widgets", "category": "physics", "status": "associate_editor_review",
         "author_id": "author-1", "editor_id": None},
    )
    fake_db.seed(
        "user_profiles",
        {"id": "ed-1", "email": "ed1@university.edu", "name": "Ed One", "roles": ["associate_editor"],
         "is_active": True, "expertise": ["biology"]},
        {"id": "ed-2", "email": "ed2@university.edu", "name": "Ed Two", "roles": ["editor"],
         "is_active": True, "expertise": ["physics"]},
        {"id": "author-1", "email": "author@university.edu", "roles": ["author", "editor"],
         "is_active": True, "expertise": ["physics"]},
        {"id": "rev-1", "email": "rev@university.edu", "roles": ["reviewer"], "is_active": True},
    )
    return fake_db


def _create(service, editor_id="ed-1", now=NOW):
    return service.create_assignment(article_id="art-1", editor_id=editor_id, assigned_by=MANAGING["id"], now=now)


def test_create_assignment_sets_deadline_and_notifies(service, seeded, email_stub):
    assignment = _create(service)

    assert assignment["status"] == "pending"
    assert assignment["deadline"] == (NOW + timedelta(days=3)).isoformat()
    assert assignment["system_generated"] is False
    notes = seeded.rows("notifications")
    assert [(n["user_id"], n["type"]) for n in notes] == [("ed-1", "editor_assignment")]
    assert email_stub.send_template_email.call_args.kwargs["template_name"] == "editor_assignment.html"


def test_create_assignment_rejects_non_editor(service, seeded):
    with pytest.raises(HTTPException) as exc:
        _create(service, editor_id="rev-1")
    assert exc.value.status_code == 400
    assert exc.value.detail == "Selected user is not an editor"


def test_create_assignment_missing_rows(service, seeded):
    with pytest.raises(HTTPException) as exc:
        service.create_assignment(article_id="missing", editor_id="ed-1", assigned_by=None, now=NOW)
    assert exc.value.detail == "Article not found"

    with pytest.raises(HTTPException) as exc:
        _create(service, editor_id="ghost")
    assert exc.value.detail == "Editor not found"


def test_duplicate_pending_assignment_conflicts(service, seeded):
    _create(service)
    with pytest.raises(HTTPException) as exc:
        _create(service)
    assert exc.value.status_code == 409
    assert len(seeded.rows("editor_assignments")) == 1


def test_unique_index_violation_maps_to_conflict(service, seeded, monkeypatch):
    _create(service)
    # 模拟并发：预检查未看到已有记录，插入时命中唯一索引
    original_table = seeded.table

    def _table(name):
        query = original_table(name)
        if name == "editor_assignments":
            query.eq = lambda key, value: query if key == "status" else type(query).eq(query, key, "no-match")
        return query

    monkeypatch.setattr(seeded, "table", _table)

    with pytest.raises(HTTPException) as exc:
        _create(service)
    assert exc.value.status_code == 409


def test_auto_assign_prefers_expertise_and_skips_author(service, seeded):
    assignment = service.auto_assign(article_id="art-1", now=NOW)

    assert assignment["editor_id"] == "ed-2"
    assert assignment["system_generated"] is True
    assert assignment["assignment_reason"] == "Automatically assigned based on expertise matching"


def test_auto_assign_without_editors(service, fake_db):
    fake_db.seed("articles", {"id": "art-1", "title": "T", "category": "physics", "author_id": "a"})
    with pytest.raises(HTTPException) as exc:
        service.auto_assign(article_id="art-1", now=NOW)
    assert exc.value.status_code == 404
    assert exc.value.detail == "No available editors found"


def test_accept_moves_article_under_review(service, seeded):
    assignment = _create(service)

    updated = service.respond(
        assignment_id=assignment["id"], editor=EDITOR, action="accept", now=NOW + timedelta(days=1)
    )

    assert updated["status"] == "accepted"
    article = seeded.get("articles", "art-1")
    assert article["status"] == "under_review"
    assert article["editor_id"] == "ed-1"
    log = seeded.rows("status_transition_logs")[-1]
    assert log["to_status"] == "under_review"
    assert log["system_generated"] is True


def test_accept_outside_table_only_sets_editor(service, seeded):
    seeded.get("articles", "art-1")["status"] = "submitted"
    assignment = _create(service)

    service.respond(assignment_id=assignment["id"], editor=EDITOR, action="accept", now=NOW)

    article = seeded.get("articles", "art-1")
    assert article["status"] == "submitted"
    assert article["editor_id"] == "ed-1"


@pytest.mark.parametrize(
    "kwargs,detail",
    [
        (
            {"action": "accept", "conflict_declared": True, "conflict_details": "Co-author"},
            "Cannot accept assignment when conflict of interest is declared",
        ),
        (
            {"action": "decline", "conflict_declared": True},
            "Conflict details are required when declaring a conflict of interest",
        ),
        (
            {"action": "decline"},
            "Decline reason is required when declining without conflict declaration",
        ),
        ({"action": "maybe"}, "Action must be accept or decline"),
    ],
)
def test_respond_validation(service, seeded, kwargs, detail):
    assignment = _create(service)
    with pytest.raises(HTTPException) as exc:
        service.respond(assignment_id=assignment["id"], editor=EDITOR, now=NOW, **kwargs)
    assert exc.value.status_code == 400
    assert exc.value.detail == detail
    assert seeded.get("editor_assignments", assignment["id"])["status"] == "pending"


def test_decline_with_conflict_records_details(service, seeded, email_stub):
    assignment = _create(service)

    updated = service.respond(
        assignment_id=assignment["id"],
        editor=EDITOR,
        action="decline",
        conflict_declared=True,
        conflict_details="Former PhD advisor of the author",
        now=NOW,
    )

    assert updated["status"] == "declined"
    assert updated["conflict_declared"] is True
    assert updated["conflict_details"] == "Former PhD advisor of the author"
    assert seeded.get("articles", "art-1")["editor_id"] is None
    assert email_stub.send_template_email.call_args.kwargs["template_name"] == "assignment_response.html"


def test_only_assigned_editor_can_respond(service, seeded):
    assignment = _create(service)
    with pytest.raises(HTTPException) as exc:
        service.respond(assignment_id=assignment["id"], editor=OTHER_EDITOR, action="accept", now=NOW)
    assert exc.value.status_code == 403


def test_second_response_is_rejected(service, seeded):
    assignment = _create(service)
    service.respond(assignment_id=assignment["id"], editor=EDITOR, action="decline", decline_reason="Busy", now=NOW)
    with pytest.raises(HTTPException) as exc:
        service.respond(assignment_id=assignment["id"], editor=EDITOR, action="accept", now=NOW)
    assert exc.value.detail == "Assignment has already been responded to"


def test_response_after_deadline_expires_assignment(service, seeded):
    assignment = _create(service)
    with pytest.raises(HTTPException) as exc:
        service.respond(assignment_id=assignment["id"], editor=EDITOR, action="accept", now=NOW + timedelta(days=4))
    assert exc.value.detail == "Assignment deadline has passed"
    assert seeded.get("editor_assignments", assignment["id"])["status"] == "expired"
    assert seeded.get("articles", "art-1")["editor_id"] is None


def test_get_assignment_expires_on_read(service, seeded):
    assignment = _create(service)

    fresh = service.get_assignment(assignment["id"], actor=EDITOR, now=NOW + timedelta(days=1))
    assert fresh["status"] == "pending"

    stale = service.get_assignment(assignment["id"], actor=MANAGING, now=NOW + timedelta(days=3, seconds=1))
    assert stale["status"] == "expired"
    assert seeded.get("editor_assignments", assignment["id"])["status"] == "expired"

    with pytest.raises(HTTPException) as exc:
        service.get_assignment(assignment["id"], actor=OTHER_EDITOR, now=NOW)
    assert exc.value.status_code == 403


def test_expire_overdue_sweep(service, seeded):
    old = _create(service, editor_id="ed-1", now=NOW - timedelta(days=5))
    recent = _create(service, editor_id="ed-2", now=NOW)

    assert service.expire_overdue(NOW) == 1
    assert seeded.get("editor_assignments", old["id"])["status"] == "expired"
    assert seeded.get("editor_assignments", recent["id"])["status"] == "pending"
