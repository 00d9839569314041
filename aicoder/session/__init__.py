"""Session management: live history and persistence."""

from aicoder.session.history import MessageHistory
from aicoder.session.store import append_message, load_session, save_session

__all__ = ["MessageHistory", "load_session", "save_session", "append_message"]
