import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int, *, min_value: int = 1) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(min_value, value)


@dataclass(frozen=True)
class AppConfig:
    """
    Application environment config.
    """
    env: str  # 'development', 'staging', 'production', 'test'
    is_staging: bool
    supabase_url: str
    supabase_key: str

    @staticmethod
    def from_env() -> "AppConfig":
        env = (os.environ.get("APP_ENV") or "development").strip().lower()
        supabase_url = (os.environ.get("SUPABASE_URL") or "").strip()
        supabase_key = (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()

        return AppConfig(
            env=env,
            is_staging=env == "staging",
            supabase_url=supabase_url,
            supabase_key=supabase_key,
        )


# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class SMTPConfig:
    """
    SMTP 配置（从环境变量读取）

    中文注释:
    1) 该配置只存在于后端进程内，严禁泄露到前端。
    2) 允许在本地/测试环境缺省（此时邮件发送逻辑会降级为“只记录日志”）。
    """

    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    from_email: str
    use_starttls: bool

    @staticmethod
    def from_env() -> Optional["SMTPConfig"]:
        host = (os.environ.get("SMTP_HOST") or "").strip()
        if not host:
            return None

        user = (os.environ.get("SMTP_USER") or "").strip() or None
        password = (os.environ.get("SMTP_PASSWORD") or "").strip() or None
        from_email = (
            os.environ.get("SMTP_FROM_EMAIL") or user or "no-reply@journaldesk.local"
        ).strip()

        return SMTPConfig(
            host=host,
            port=_env_int("SMTP_PORT", 587),
            user=user,
            password=password,
            from_email=from_email,
            use_starttls=_env_bool("SMTP_USE_STARTTLS", True),
        )


@dataclass(frozen=True)
class ResendConfig:
    """
    Resend API configuration (production email).
    """
    api_key: str
    sender: str

    @staticmethod
    def from_env() -> Optional["ResendConfig"]:
        api_key = (os.environ.get("RESEND_API_KEY") or "").strip()
        if not api_key:
            return None

        sender = (
            os.environ.get("EMAIL_SENDER") or "JournalDesk <onboarding@resend.dev>"
        ).strip()

        return ResendConfig(api_key=api_key, sender=sender)


@dataclass(frozen=True)
class WorkflowConfig:
    """
    编辑流程时限配置（天）

    中文注释:
    - reminder_days: 审稿邀请发出后多久未回复发送第一次提醒。
    - withdrawal_days: 邀请发出后多久仍未回复（且已提醒）自动撤回。
    - 非法数值一律回退到默认值，避免 Cron 因配置错误整体失败。
    """

    reminder_days: int
    withdrawal_days: int
    response_days: int
    review_days: int
    editor_assignment_days: int

    @staticmethod
    def from_env() -> "WorkflowConfig":
        reminder_days = _env_int("REVIEW_REMINDER_DAYS", 7)
        withdrawal_days = _env_int("REVIEW_WITHDRAWAL_DAYS", 14)
        if withdrawal_days <= reminder_days:
            withdrawal_days = reminder_days * 2
        return WorkflowConfig(
            reminder_days=reminder_days,
            withdrawal_days=withdrawal_days,
            response_days=_env_int("REVIEW_RESPONSE_DAYS", 7),
            review_days=_env_int("REVIEW_COMPLETION_DAYS", 21),
            editor_assignment_days=_env_int("EDITOR_ASSIGNMENT_DEADLINE_DAYS", 3),
        )


@dataclass(frozen=True)
class SentryConfig:
    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        raw_rate = (os.environ.get("SENTRY_TRACES_SAMPLE_RATE") or "0").strip()
        try:
            rate = float(raw_rate)
        except ValueError:
            rate = 0.0
        return SentryConfig(
            enabled=_env_bool("SENTRY_ENABLED", bool(dsn)),
            dsn=dsn,
            environment=(os.environ.get("APP_ENV") or "development").strip().lower(),
            traces_sample_rate=min(max(rate, 0.0), 1.0),
        )


def get_admin_api_key() -> Optional[str]:
    """
    内部 Cron 接口鉴权 Key

    中文注释:
    - 仅用于 `/api/v1/internal/cron/*`，避免暴露到公网用户接口。
    """

    raw = os.environ.get("ADMIN_API_KEY")
    return raw.strip() if raw else None


def get_admin_notification_email() -> str:
    return (os.environ.get("ADMIN_EMAIL") or "editorial-office@journaldesk.local").strip()


def get_public_base_url() -> str:
    return (os.environ.get("PUBLIC_BASE_URL") or "http://localhost:3000").strip().rstrip("/")


def get_invitation_token_secret() -> str:
    """
    邀请链接签名密钥。

    中文注释:
    - 严禁复用 SUPABASE_SERVICE_ROLE_KEY 参与签名。
    - 本地未配置时使用固定开发密钥，生产必须显式配置。
    """

    for key in ("INVITATION_TOKEN_SECRET", "SECRET_KEY"):
        raw = (os.environ.get(key) or "").strip()
        if raw:
            return raw
    return "dev-invitation-secret"
