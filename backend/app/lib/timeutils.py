from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def parse_iso_datetime(raw: Any) -> datetime | None:
    """
    解析数据库返回的时间（ISO 字符串或 datetime），统一转为带时区的 UTC。
    无法解析时返回 None。
    """
    if isinstance(raw, datetime):
        dt = raw
    else:
        text = str(raw or "").strip()
        if not text:
            return None
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
