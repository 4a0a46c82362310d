import os
import sys
from datetime import timedelta
from typing import AsyncGenerator
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.auth_utils import get_current_user  # noqa: E402
from app.core.config import WorkflowConfig  # noqa: E402
from app.core.mail import EmailService  # noqa: E402
from app.core.roles import get_current_profile  # noqa: E402
from main import app  # noqa: E402
from tests.utils.api_client import generate_test_token  # noqa: E402
from tests.utils.fake_supabase import FakeSupabase  # noqa: E402

# === 全局测试配置 ===
# 中文注释:
# 1. 显式使用 pytest_asyncio.fixture 解决 STRICT 模式下的生成器问题。
# 2. 服务层测试统一使用内存版 FakeSupabase，不依赖真实数据库。
# 3. JWT 令牌生成用于测试认证（与 auth_utils 的 HS256 本地校验路径一致）。


@pytest_asyncio.fixture
async def client() -> AsyncGenerator:
    """
    提供一个模拟的异步测试客户端
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_token():
    return generate_test_token()


@pytest.fixture
def expired_token():
    return generate_test_token(expires_in=timedelta(hours=-1))


@pytest.fixture
def invalid_token():
    return "invalid.jwt.token"


@pytest.fixture
def fake_db() -> FakeSupabase:
    db = FakeSupabase()
    # 与迁移脚本中的唯一约束保持一致
    db.unique("editor_assignments", "article_id", "editor_id", where=lambda r: r.get("status") == "pending")
    db.unique("conflict_questionnaires", "user_id", "article_id", "role")
    return db


@pytest.fixture
def email_stub() -> MagicMock:
    stub = MagicMock(spec=EmailService)
    stub.send_template_email.return_value = True
    stub.is_configured.return_value = True
    stub.create_token.side_effect = lambda payload, salt="review-invitation": f"signed-token-{payload['invitation_id']}"
    return stub


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig(
        reminder_days=7,
        withdrawal_days=14,
        response_days=7,
        review_days=21,
        editor_assignment_days=3,
    )


@pytest.fixture
def override_profile():
    """
    以指定 profile 覆盖鉴权依赖（get_current_user + get_current_profile）。
    """

    def _apply(profile: dict) -> dict:
        async def _profile():
            return profile

        async def _user():
            return {"id": profile["id"], "email": profile.get("email")}

        app.dependency_overrides[get_current_profile] = _profile
        app.dependency_overrides[get_current_user] = _user
        return profile

    yield _apply
    app.dependency_overrides.pop(get_current_profile, None)
    app.dependency_overrides.pop(get_current_user, None)
