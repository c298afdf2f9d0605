from chatsync.session.lifecycle import (
    NoticeKind,
    SessionLifecycle,
    SessionNotice,
    SessionState,
)

__all__ = ["NoticeKind", "SessionLifecycle", "SessionNotice", "SessionState"]
