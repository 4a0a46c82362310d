import logging
from typing import Any

from app.core.config import SentryConfig

logger = logging.getLogger("journaldesk.sentry")

_SENSITIVE_KEYS = {
    "password",
    "access_token",
    "refresh_token",
    "token",
    "invitation_token",
    "authorization",
    "cookie",
    "set-cookie",
    "x-admin-key",
    "service_role_key",
    "confidential_comments",
}

# 稿件正文/摘要可能很长，不应随事件上报
_MAX_TEXT_LENGTH = 2000


def _scrub(value: Any) -> Any:
    """
    递归去除敏感字段与超长文本（稿件内容、审稿意见）。
    """
    if isinstance(value, str) and len(value) > _MAX_TEXT_LENGTH:
        return "[Filtered]"

    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if str(k).strip().lower() in _SENSITIVE_KEYS:
                out[str(k)] = "[Filtered]"
            else:
                out[str(k)] = _scrub(v)
        return out

    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]

    return value


def _before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    # 中文注释: 不上传请求体与 cookie，请求头只保留非敏感项。
    request = event.get("request")
    if isinstance(request, dict):
        headers = request.get("headers")
        if isinstance(headers, dict):
            request["headers"] = {
                k: v for k, v in headers.items() if str(k).strip().lower() not in _SENSITIVE_KEYS
            }
        for key in ("cookies", "data", "body"):
            if key in request:
                request[key] = "[Filtered]"
        event["request"] = request

    for section in ("extra", "contexts"):
        obj = event.get(section)
        if isinstance(obj, dict):
            event[section] = _scrub(obj)

    return event


def init_sentry(cfg: SentryConfig | None = None) -> bool:
    """
    初始化 Sentry。

    未配置 DSN 或显式禁用时直接返回 False；初始化异常由调用方记录，不阻塞启动。
    """
    cfg = cfg or SentryConfig.from_env()
    if not cfg.enabled or not cfg.dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=cfg.dsn,
        environment=cfg.environment,
        traces_sample_rate=cfg.traces_sample_rate,
        integrations=[FastApiIntegration()],
        send_default_pii=False,
        max_request_body_size="never",
        before_send=_before_send,
    )
    logger.info("Sentry initialized (env=%s)", cfg.environment)
    return True
