"""
Service Layer Package

Business logic services between the HTTP routes and the progress engine.

Core Services:
- ProgressService: Game sessions, activity logging, daily and weekly reports
- ConversationService: Chat turns with risk classification and fallback replies
"""

from src.services.container import ServiceContainer, build_container
from src.services.conversation_service import ConversationService
from src.services.progress_service import ProgressService

__all__ = [
    "ServiceContainer",
    "build_container",
    "ConversationService",
    "ProgressService",
]
