from .itinerary import Activity, DayPlan, Itinerary
from .message import ItineraryBody, Message, MessageBody, PendingBody, Sender, TextBody
from .session import ChatSession, StoredMessage
from .user import AuthResult, SignUpData, UserProfile

__all__ = [
    "Activity",
    "DayPlan",
    "Itinerary",
    "ItineraryBody",
    "Message",
    "MessageBody",
    "PendingBody",
    "Sender",
    "TextBody",
    "ChatSession",
    "StoredMessage",
    "AuthResult",
    "SignUpData",
    "UserProfile",
]
