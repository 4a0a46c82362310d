from app.core.config import SentryConfig
from app.core.sentry_init import _before_send, _scrub, init_sentry


def test_before_send_filters_request_body_and_sensitive_headers():
    event = {
        "request": {
            "headers": {
                "Authorization": "Bearer secret",
                "Cookie": "a=b",
                "X-Admin-Key": "cron-key",
                "X-Test": "ok",
            },
            "data": {"password": "cleartext", "other": "value"},
            "cookies": {"a": "b"},
            "body": "raw-body",
        },
        "extra": {"password": "cleartext", "invitation_token": "abc", "review": {"confidential_comments": "x"}},
    }

    out = _before_send(event, {})
    assert out is not None

    request = out["request"]
    assert request["data"] == "[Filtered]"
    assert request["body"] == "[Filtered]"
    assert request["cookies"] == "[Filtered]"
    assert set(request["headers"]) == {"X-Test"}
    assert out["extra"]["password"] == "[Filtered]"
    assert out["extra"]["invitation_token"] == "[Filtered]"
    assert out["extra"]["review"]["confidential_comments"] == "[Filtered]"


def test_scrub_drops_long_text():
    assert _scrub({"content": "x" * 5000, "title": "short"}) == {"content": "[Filtered]", "title": "short"}


def test_init_sentry_disabled_without_dsn(monkeypatch):
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    monkeypatch.delenv("SENTRY_ENABLED", raising=False)
    assert init_sentry() is False


def test_init_sentry_respects_explicit_disable():
    cfg = SentryConfig(enabled=False, dsn="https://key@sentry.invalid/1", environment="test", traces_sample_rate=0.0)
    assert init_sentry(cfg) is False
