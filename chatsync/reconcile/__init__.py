from chatsync.reconcile.engine import MessageReconciler
from chatsync.reconcile.messages import (
    ChatMessage,
    ConfirmedMessage,
    PendingMessage,
    StatusMessage,
    StatusPhrases,
)

__all__ = [
    "MessageReconciler",
    "ChatMessage",
    "ConfirmedMessage",
    "PendingMessage",
    "StatusMessage",
    "StatusPhrases",
]
