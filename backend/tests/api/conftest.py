from types import SimpleNamespace

import pytest

from app.api.v1 import (
    articles,
    conflicts,
    editor_assignments,
    internal,
    messages,
    notifications,
    reviews,
    workflow,
)
from app.api.v1.admin import review_deadlines
from app.core.scheduler import ReviewDeadlineManager
from app.services.conflict_service import ConflictService
from app.services.editor_assignment_service import EditorAssignmentService
from app.services.messaging_service import MessagingService
from app.services.notification_service import NotificationService
from app.services.review_service import ReviewService
from app.services.workflow_service import WorkflowService
from main import app


@pytest.fixture
def services(fake_db, email_stub, workflow_config):
    """
    把所有路由的 service provider 绑定到同一个 FakeSupabase。

    中文注释: client fixture 结束时会清空 dependency_overrides。
    """
    workflow_service = WorkflowService(fake_db, email=email_stub)
    bundle = SimpleNamespace(
        db=fake_db,
        email=email_stub,
        workflow=workflow_service,
        reviews=ReviewService(fake_db, workflow=workflow_service, email=email_stub, config=workflow_config),
        assignments=EditorAssignmentService(
            fake_db, workflow=workflow_service, email=email_stub, config=workflow_config
        ),
        deadlines=ReviewDeadlineManager(fake_db, email=email_stub, config=workflow_config),
        conflicts=ConflictService(fake_db),
        messaging=MessagingService(fake_db),
        notifications=NotificationService(fake_db),
    )

    app.dependency_overrides[articles.get_workflow_service] = lambda: bundle.workflow
    app.dependency_overrides[articles.get_review_service] = lambda: bundle.reviews
    app.dependency_overrides[workflow.get_workflow_service] = lambda: bundle.workflow
    app.dependency_overrides[reviews.get_review_service] = lambda: bundle.reviews
    app.dependency_overrides[editor_assignments.get_assignment_service] = lambda: bundle.assignments
    app.dependency_overrides[internal.get_assignment_service] = lambda: bundle.assignments
    app.dependency_overrides[internal.get_deadline_manager] = lambda: bundle.deadlines
    app.dependency_overrides[review_deadlines.get_deadline_manager] = lambda: bundle.deadlines
    app.dependency_overrides[conflicts.get_conflict_service] = lambda: bundle.conflicts
    app.dependency_overrides[messages.get_messaging_service] = lambda: bundle.messaging
    app.dependency_overrides[notifications.get_notification_service] = lambda: bundle.notifications
    yield bundle
    app.dependency_overrides.clear()
