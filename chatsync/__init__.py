"""Client-side synchronization core for agent chat sessions."""

from chatsync.chat import ChatController, ChatSnapshot, ErrorChannel

__version__ = "0.1.0"

__all__ = ["ChatController", "ChatSnapshot", "ErrorChannel", "__version__"]
