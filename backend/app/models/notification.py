from typing import Literal


NotificationType = Literal[
    "submission",
    "status_change",
    "editor_assignment",
    "review_invite",
    "review_submitted",
    "reviews_complete",
    "review_overdue",
    "message",
    "system",
]
