"""Persistence layer -- SQLAlchemy asyncio models and repositories."""

from speech_keyboard.storage.database import Database
from speech_keyboard.storage.models import Base, Prompt, Subscription, Transcript, User
from speech_keyboard.storage.repositories import (
    PromptRepository,
    TranscriptRepository,
    UserRepository,
)

__all__ = [
    "Base",
    "Database",
    "Prompt",
    "PromptRepository",
    "Subscription",
    "Transcript",
    "TranscriptRepository",
    "User",
    "UserRepository",
]
