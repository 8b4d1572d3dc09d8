from app.models.message import Message, MessageStatus
from app.models.user import User

__all__ = ["Message", "MessageStatus", "User"]
