"""
PawMatch — ORM model registry.

Importing every model here ensures that anything inspecting
``Base.metadata`` discovers all tables and that string-based relationship
targets resolve.
"""

from app.models.user import UserProfile
from app.models.dog import DogProfile, DogPhoto
from app.models.match import Match
from app.models.conversation import Conversation, Message

__all__ = [
    "UserProfile",
    "DogProfile",
    "DogPhoto",
    "Match",
    "Conversation",
    "Message",
]
