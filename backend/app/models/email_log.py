from enum import Enum


class EmailStatus(str, Enum):
    """
    email_logs.status
    """

    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"
