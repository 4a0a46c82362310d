import os
from typing import Any, Callable, Optional

from supabase import Client, create_client

from app.core.config import app_config

url: str = app_config.supabase_url

# 中文注释: anon key 仅用于校验用户 JWT 的客户端；SUPABASE_KEY 为兼容名。
key: str = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("SUPABASE_KEY") or ""

service_role_key: str = app_config.supabase_key or os.environ.get(
    "SUPABASE_SERVICE_ROLE_KEY", ""
)


class _LazySupabaseClient:
    """
    首次访问属性时才创建 Supabase Client。

    中文注释: 各 service 以 `client or supabase_admin` 取默认客户端，缺少 SUPABASE_URL/KEY 时在首次查询处报错。
    """

    def __init__(self, factory: Callable[[], Client], *, name: str):
        self._factory = factory
        self._name = name
        self._client: Optional[Client] = None

    def _get(self) -> Client:
        if self._client is None:
            self._client = self._factory()
        return self._client

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get(), item)

    def __repr__(self) -> str:
        state = "ready" if self._client is not None else "lazy"
        return f"<LazySupabaseClient {self._name} ({state})>"


def _require_supabase_url() -> str:
    if not url:
        raise RuntimeError("SUPABASE_URL is required")
    return url


def _require_anon_key() -> str:
    if not key:
        raise RuntimeError("SUPABASE_ANON_KEY or SUPABASE_KEY is required")
    return key


def _create_supabase() -> Client:
    return create_client(_require_supabase_url(), _require_anon_key())


def _create_supabase_admin() -> Client:
    admin_key = service_role_key or key
    if not admin_key:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) is required")
    return create_client(_require_supabase_url(), admin_key)


# === 用户态客户端（auth_utils 校验 token） ===
supabase: Client = _LazySupabaseClient(_create_supabase, name="supabase")  # type: ignore[assignment]

# === service-role 客户端（各 service 与 Cron 默认使用） ===
supabase_admin: Client = _LazySupabaseClient(_create_supabase_admin, name="supabase_admin")  # type: ignore[assignment]
